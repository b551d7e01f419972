"""
Command line entry point for the Smart Cache CLI.

Lists observed queries and tables, and creates, edits and resets query
caching rules for one application namespace. Results are printed as JSON.
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from shared.config import BaseConfig, get_config
from shared.errors import SmartCacheException, ValidationError
from shared.logging import clear_context, configure_logging, get_logger, set_session_context

from .analytics.source import (
    QueryMetricsSource, resolve_queries, resolve_tables, sort_queries, sort_tables
)
from .editor.rule_set import RuleSetEditor
from .rules.codec import rule_from_document, rule_to_document
from .rules.models import QueryInfo, Rule, RuleCreateRequest, TableInfo, validate_rule
from .store.rule_store import RuleEncoding, RuleStoreClient

__version__ = "0.1.0"

logger = get_logger("smartcache.cli")


def query_as_dict(query: QueryInfo) -> Dict[str, Any]:
    return {
        "id": query.id,
        "key": query.key,
        "table": query.table,
        "sql": query.sql,
        "accessFrequency": query.count,
        "meanQueryTime": round(query.mean_time, 2),
        "currentTtl": query.current_ttl,
        "pendingTtl": query.pending_ttl,
    }


def table_as_dict(table: TableInfo) -> Dict[str, Any]:
    return {
        "name": table.name,
        "accessFrequency": table.access_frequency,
        "avgQueryTime": round(table.avg_query_time, 2),
        "currentTtl": table.rule.ttl if table.rule else "",
    }


def parse_rule_json(text: str) -> Rule:
    """Parse and validate a rule given in its document form."""
    try:
        return validate_rule(rule_from_document(json.loads(text)))
    except ValueError as e:
        raise ValidationError(f"Invalid rule '{text}': {e}") from e


def parse_update(text: str) -> tuple:
    index, sep, rule_text = text.partition("=")
    if not sep or not index.strip().isdigit():
        raise ValidationError(f"Invalid update '{text}'; expected INDEX=JSON")
    return int(index), parse_rule_json(rule_text)


async def list_queries(store: RuleStoreClient, config: BaseConfig, args) -> List[Dict[str, Any]]:
    rules = await store.read_latest_rules(config.application)
    source = QueryMetricsSource(store.client)
    queries = await source.fetch_observed_queries(config.application)
    queries = sort_queries(resolve_queries(queries, rules), args.sortby, args.sort_direction)
    return [query_as_dict(q) for q in queries]


async def list_tables(store: RuleStoreClient, config: BaseConfig, args) -> List[Dict[str, Any]]:
    rules = await store.read_latest_rules(config.application)
    source = QueryMetricsSource(store.client)
    tables = await source.fetch_observed_tables(config.application)
    tables = sort_tables(resolve_tables(tables, rules), args.sortby, args.sort_direction)
    return [table_as_dict(t) for t in tables]


async def list_rules(store: RuleStoreClient, config: BaseConfig, args) -> Dict[str, Any]:
    snapshot = await store.read_latest_snapshot(config.application)
    return {
        "version": snapshot.version,
        "cleared": snapshot.cleared,
        "rules": [
            dict(precedence=index, **rule_to_document(rule))
            for index, rule in enumerate(snapshot.rules)
        ],
        "warnings": [w.field for w in snapshot.warnings],
    }


async def make_rule(store: RuleStoreClient, config: BaseConfig, args) -> Dict[str, Any]:
    try:
        request = RuleCreateRequest(
            ttl=args.ttl,
            tables=args.tables_exact,
            tables_any=args.tables_any,
            tables_all=args.tables_all,
            query_ids=args.query_ids,
            regex=args.regex,
        )
    except PydanticValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        raise ValidationError(f"Invalid rule: {messages}") from e

    rule = request.to_rule()
    version = await store.commit_append([rule], config.application)
    return {"version": version, "rule": rule_to_document(rule)}


async def update_rules(store: RuleStoreClient, config: BaseConfig, args) -> Dict[str, Any]:
    updates = [parse_update(text) for text in args.update]
    additions = [parse_rule_json(text) for text in args.add]

    editor = RuleSetEditor(store, config.application)
    await editor.load()

    # Stored positions are addressed before new rules shift the working copy.
    for index, rule in updates:
        editor.propose_update(index, rule)
    for index in args.delete:
        editor.propose_delete(index)
    for rule in additions:
        editor.propose_add(rule)

    if not editor.has_pending_changes:
        return {"version": editor.baseline_version, "added": 0, "updated": 0, "deleted": 0}

    rules_to_add, rules_to_update, rules_to_delete = editor.changes()
    version = await editor.commit()
    return {
        "version": version,
        "added": len(rules_to_add),
        "updated": len(rules_to_update),
        "deleted": len(rules_to_delete),
    }


async def reset_config(store: RuleStoreClient, config: BaseConfig, args) -> Dict[str, Any]:
    version = await store.commit_rules([], config.application)
    return {"version": version, "rules": []}


async def clear_metrics(store: RuleStoreClient, config: BaseConfig, args) -> Dict[str, Any]:
    source = QueryMetricsSource(store.client)
    cleared = await source.clear_metrics(config.application)
    return {"clearedSeries": cleared}


COMMANDS = {
    "list-queries": list_queries,
    "list-tables": list_tables,
    "list-rules": list_rules,
    "make-rule": make_rule,
    "update-rules": update_rules,
    "reset-config": reset_config,
    "clear-metrics": clear_metrics,
}


async def execute(args: argparse.Namespace, config: BaseConfig, store: Optional[RuleStoreClient] = None) -> Any:
    """Run one command against a connected rule store."""
    if store is None:
        store = RuleStoreClient(
            config.redis_url,
            encoding=RuleEncoding(config.rule_encoding),
            timeout=config.redis_timeout_seconds,
        )
    async with store:
        return await COMMANDS[args.command](store, config, args)


def _add_sort_args(parser: argparse.ArgumentParser, default: str, help_text: str):
    parser.add_argument("-s", "--sortby", default=default, help=help_text)
    parser.add_argument(
        "-d", "--sortDirection", "--sort-direction",
        dest="sort_direction", default="DESC", help="Sort direction, ASC or DESC"
    )


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="smartcache-cli",
        description="Inspect Smart Cache query statistics and manage query caching rules."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--redis-url", default=None, help="Redis connection URL (env SMARTCACHE_REDIS_URL)")
    parser.add_argument("-a", "--application", default=None, help="Application namespace (env SMARTCACHE_APPLICATION)")
    parser.add_argument("--encoding", choices=[e.value for e in RuleEncoding], default=None, help="Rule storage format")
    parser.add_argument("--log-level", default=None, help="Log level (env SMARTCACHE_LOG_LEVEL)")

    commands = parser.add_subparsers(dest="command", required=True)

    queries = commands.add_parser("list-queries", help="List queries tracked by Smart Cache")
    _add_sort_args(queries, "queryTime", "One of queryTime, accessFrequency, tables, id")

    tables = commands.add_parser("list-tables", help="List tables seen in tracked queries")
    _add_sort_args(tables, "accessFrequency", "One of queryTime, accessFrequency, name")

    commands.add_parser("list-rules", help="List caching rules in precedence order")

    make = commands.add_parser("make-rule", help="Create a caching rule with highest precedence")
    make.add_argument("-t", "--ttl", required=True, help="Time to live as a duration (e.g. 5m, 300s, 2d)")
    make.add_argument("-e", "--tables-exact", "--tablesExact", dest="tables_exact", default=None,
                      help="Match if exactly these tables appear in the query")
    make.add_argument("-x", "--tables-any", "--tablesAny", dest="tables_any", default=None,
                      help="Match if any of these tables appear in the query")
    make.add_argument("-l", "--tables-all", "--tablesAll", dest="tables_all", default=None,
                      help="Match if all of these tables appear in the query")
    make.add_argument("-q", "--query-ids", "--queryIds", dest="query_ids", default=None,
                      help="Match these query ids")
    make.add_argument("-r", "--regex", default=None, help="Match if the regex matches the SQL")

    update = commands.add_parser("update-rules", help="Add, update and delete rules in one commit")
    update.add_argument("--add", action="append", default=[], metavar="JSON",
                        help="Rule to add at the front, e.g. '{\"ttl\": \"5m\", \"tablesAny\": [\"orders\"]}'")
    update.add_argument("--update", action="append", default=[], metavar="INDEX=JSON",
                        help="Replace the rule at a stored position")
    update.add_argument("--delete", action="append", default=[], type=int, metavar="INDEX",
                        help="Delete the rule at a stored position")

    commands.add_parser("reset-config", help="Remove every caching rule")
    commands.add_parser("clear-metrics", help="Delete recorded query statistics")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        config = get_config(
            redis_url=args.redis_url,
            application=args.application,
            rule_encoding=args.encoding,
            log_level=args.log_level,
        )
    except PydanticValidationError as exc:
        print(f"[smartcache] invalid configuration: {exc}", file=sys.stderr)
        return 1

    configure_logging("smartcache", config.log_level)
    set_session_context(namespace=config.application)

    try:
        result = asyncio.run(execute(args, config))
    except KeyboardInterrupt:
        return 130
    except SmartCacheException as exc:
        logger.error("Command failed", command=args.command, code=exc.code, error=exc.message)
        print(exc.to_response().model_dump_json(), file=sys.stderr)
        return 1
    finally:
        clear_context()

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
