"""
Pending TTL assignments made from the query and table listings.

Queries given the same TTL share one pending rule matching their ids.
"""

from typing import Dict, List, Optional

from shared.errors import ValidationError
from shared.logging import get_logger
from ..rules.models import QueryInfo, Rule, parse_duration
from ..store.rule_store import RuleStoreClient


def _validate_ttl(ttl: str) -> str:
    ttl = (ttl or "").strip()
    try:
        parse_duration(ttl)
    except ValueError as e:
        raise ValidationError(str(e), {"ttl": ttl}) from e
    return ttl


def table_rule(table_name: str, ttl: str) -> Rule:
    """Rule caching every query that touches ``table_name``."""
    if not table_name:
        raise ValidationError("Table name is required")
    return Rule(ttl=_validate_ttl(ttl), tables_any=[table_name])


class PendingQueryRules:
    """Groups per-query TTL choices into rules until committed."""

    def __init__(self, store: RuleStoreClient, namespace: str):
        self.store = store
        self.namespace = namespace
        self.logger = get_logger("smartcache.editor.pending")
        self._by_ttl: Dict[str, Rule] = {}
        self._queries: Dict[str, QueryInfo] = {}

    def __len__(self) -> int:
        return len(self._by_ttl)

    @property
    def rules(self) -> List[Rule]:
        return list(self._by_ttl.values())

    def set_ttl(self, query: QueryInfo, ttl: str) -> Rule:
        """Give ``query`` a pending TTL, replacing any earlier choice."""
        ttl = _validate_ttl(ttl)
        self._discard(query.id)

        rule = self._by_ttl.get(ttl)
        if rule is None:
            rule = Rule(ttl=ttl, query_ids=[])
            self._by_ttl[ttl] = rule
        rule.query_ids.append(query.id)

        query.pending_rule = rule
        self._queries[query.id] = query
        self.logger.debug("Pending TTL set", query_id=query.id, ttl=ttl)
        return rule

    def clear_ttl(self, query: QueryInfo):
        self._discard(query.id)
        query.pending_rule = None

    def _discard(self, query_id: str):
        previous: Optional[QueryInfo] = self._queries.pop(query_id, None)
        if previous is None or previous.pending_rule is None:
            return
        rule = previous.pending_rule
        rule.query_ids.remove(query_id)
        if not rule.query_ids:
            del self._by_ttl[rule.ttl]

    async def commit(self) -> Optional[str]:
        """Prepend all pending rules to the stored list."""
        if not self._by_ttl:
            return None

        rules = self.rules
        version = await self.store.commit_append(rules, self.namespace)
        for query in self._queries.values():
            query.pending_rule = None
        self._by_ttl.clear()
        self._queries.clear()
        self.logger.info("Committed pending query rules", version=version, count=len(rules))
        return version
