"""
Rule matching for observed queries and tables.

Rules are scanned in list order (index 0 first) and the first rule that
satisfies any of its criteria wins.
"""

import re
from typing import Iterable, List, Optional, Sequence

from shared.logging import get_logger
from .models import Rule

logger = get_logger("smartcache.rules.matcher")


def split_tables(table_csv: Optional[str]) -> List[str]:
    """Split a stored comma-joined table list."""
    return (table_csv or "").split(",")


def _regex_matches(pattern: str, sql: str) -> bool:
    try:
        return re.search(pattern, sql or "") is not None
    except re.error as e:
        logger.debug("Ignoring invalid rule regex", regex=pattern, error=str(e))
        return False


def rule_matches(rule: Rule, subject_tables: Sequence[str], subject_id: str, subject_sql: str) -> bool:
    """Check a single rule against a query descriptor."""
    # Every observed table must be accepted by the rule. The converse is not
    # checked: a rule listing extra tables still matches.
    exact = rule.tables or []
    if subject_tables and all(table in exact for table in subject_tables):
        return True

    if rule.tables_all and all(table in subject_tables for table in rule.tables_all):
        return True

    if rule.tables_any and any(table in rule.tables_any for table in subject_tables):
        return True

    if rule.regex is not None and _regex_matches(rule.regex, subject_sql):
        return True

    if rule.query_ids and subject_id in rule.query_ids:
        return True

    return rule.is_catch_all()


def match_rule(
    subject_tables: Iterable[str],
    subject_id: str,
    subject_sql: str,
    rules: Sequence[Rule]
) -> Optional[Rule]:
    """Return the highest precedence rule matching the query, or None."""
    tables = list(dict.fromkeys(subject_tables))
    for rule in rules:
        if rule_matches(rule, tables, subject_id, subject_sql):
            return rule
    return None


def match_table_rule(table_name: str, rules: Sequence[Rule]) -> Optional[Rule]:
    """Return the highest precedence rule applying to a single table."""
    for rule in rules:
        if rule.tables_any and table_name in rule.tables_any:
            return rule
        if rule.is_catch_all():
            return rule
        if rule.tables and table_name in rule.tables:
            return rule
        if rule.tables_all and table_name in rule.tables_all:
            return rule
    return None
