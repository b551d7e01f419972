"""
Observed query and table statistics recorded by Smart Cache.

Per-query statistics live in RedisTimeSeries series labelled
``name=query``, ``id=<query id>`` and ``stat=count|mean``; query metadata
(table list and SQL text) lives in the hash ``<namespace>:query:<id>``.

Series labels carry no application, so a query belongs to a namespace
when its metadata hash exists under that namespace.
"""

from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.config import query_key
from shared.errors import TransportError, ValidationError
from shared.logging import get_logger
from ..rules.matcher import match_rule, match_table_rule, split_tables
from ..rules.models import QueryInfo, Rule, TableInfo

MAX_TIMESTAMP = 9223372036854775807


def _labels(raw: List[Any]) -> Dict[str, str]:
    return {pair[0]: pair[1] for pair in raw}


class QueryMetricsSource:
    """Reads observed query statistics from Redis."""

    def __init__(self, client: redis.Redis):
        self.redis = client
        self.logger = get_logger("smartcache.analytics.source")

    async def fetch_observed_queries(self, namespace: str) -> List[QueryInfo]:
        """All queries with their access count, mean time, tables and SQL."""
        try:
            series = await self.redis.execute_command(
                "TS.MGET", "WITHLABELS", "FILTER", "name=query", "stat=(count,mean)"
            )
        except RedisError as e:
            self.logger.error("Error reading query statistics", error=str(e))
            raise TransportError(f"Unable to read query statistics: {e}") from e

        queries: Dict[str, QueryInfo] = {}
        for item in series or []:
            try:
                labels = _labels(item[1])
                query_id = labels["id"]
                sample = item[2]
                query = queries.setdefault(
                    query_id,
                    QueryInfo(id=query_id, key=query_key(namespace, query_id))
                )
                if not sample:
                    continue
                if labels.get("stat") == "mean":
                    query.mean_time = float(sample[1])
                elif labels.get("stat") == "count":
                    query.count = int(float(sample[1]))
            except (IndexError, KeyError, TypeError, ValueError) as e:
                raise TransportError(f"Unexpected TS.MGET reply: {e}", {"item": repr(item)}) from e

        if not queries:
            return []

        ids = list(queries)
        try:
            async with self.redis.pipeline(transaction=False) as pipe:
                for query_id in ids:
                    pipe.hgetall(query_key(namespace, query_id))
                results = await pipe.execute(raise_on_error=False)
        except RedisError as e:
            self.logger.error("Error reading query metadata", error=str(e))
            raise TransportError(f"Unable to read query metadata: {e}") from e

        owned: List[QueryInfo] = []
        for query_id, result in zip(ids, results):
            if isinstance(result, Exception) or not result:
                continue
            query = queries[query_id]
            query.table = result.get("table", "")
            query.sql = result.get("sql", "")
            owned.append(query)

        self.logger.debug(
            "Fetched observed queries",
            namespace=namespace,
            count=len(owned),
            skipped=len(queries) - len(owned)
        )
        return owned

    async def fetch_observed_tables(self, namespace: str) -> List[TableInfo]:
        """Per-table totals derived from the observed queries."""
        queries = await self.fetch_observed_queries(namespace)
        return aggregate_tables(queries)

    async def clear_metrics(self, namespace: str) -> int:
        """Delete recorded samples of the namespace's queries; returns the series count."""
        queries = await self.fetch_observed_queries(namespace)
        keys: List[str] = []
        try:
            for query in queries:
                keys.extend(await self.redis.execute_command(
                    "TS.QUERYINDEX", "name=query", f"id={query.id}"
                ) or [])
            async with self.redis.pipeline(transaction=False) as pipe:
                for key in keys:
                    pipe.execute_command("TS.DEL", key, 0, MAX_TIMESTAMP)
                await pipe.execute()
        except RedisError as e:
            self.logger.error("Error clearing metrics", error=str(e))
            raise TransportError(f"Unable to clear metrics: {e}") from e

        self.logger.info("Cleared query metrics", namespace=namespace, queries=len(queries), series=len(keys))
        return len(keys)


def aggregate_tables(queries: List[QueryInfo]) -> List[TableInfo]:
    """Group queries by each table they touch."""
    totals: Dict[str, List[float]] = {}
    tables: Dict[str, TableInfo] = {}
    for query in queries:
        for name in split_tables(query.table):
            if not name:
                continue
            table = tables.setdefault(name, TableInfo(name=name))
            table.access_frequency += query.count
            totals.setdefault(name, []).append(query.mean_time)

    for name, table in tables.items():
        means = totals[name]
        table.avg_query_time = sum(means) / len(means)

    return list(tables.values())


def resolve_queries(queries: List[QueryInfo], rules: List[Rule]) -> List[QueryInfo]:
    """Attach the rule currently governing each query."""
    for query in queries:
        query.rule = match_rule(split_tables(query.table), query.id, query.sql, rules)
    return queries


def resolve_tables(tables: List[TableInfo], rules: List[Rule]) -> List[TableInfo]:
    """Attach the rule currently governing each table."""
    for table in tables:
        table.rule = match_table_rule(table.name, rules)
    return tables


def sort_queries(queries: List[QueryInfo], sort_by: str, direction: str) -> List[QueryInfo]:
    keys = {
        "querytime": lambda q: q.mean_time,
        "accessfrequency": lambda q: q.count,
        "tables": lambda q: q.table,
        "id": lambda q: q.id,
    }
    return _sorted(queries, keys, sort_by, direction)


def sort_tables(tables: List[TableInfo], sort_by: str, direction: str) -> List[TableInfo]:
    keys = {
        "querytime": lambda t: t.avg_query_time,
        "accessfrequency": lambda t: t.access_frequency,
        "name": lambda t: t.name,
    }
    return _sorted(tables, keys, sort_by, direction)


def _sorted(items: List[Any], keys: Dict[str, Any], sort_by: str, direction: str) -> List[Any]:
    key: Optional[Any] = keys.get(sort_by.lower())
    if key is None:
        raise ValidationError(f"'{sort_by}' is not a valid sort field (valid: {', '.join(keys)})")
    if direction.lower() not in ("asc", "desc"):
        raise ValidationError(f"'{direction}' is not a valid sort direction (valid: asc, desc)")
    return sorted(items, key=key, reverse=direction.lower() == "desc")
