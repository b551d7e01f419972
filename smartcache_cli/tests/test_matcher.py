"""
Unit tests for rule matching.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from smartcache_cli.app.rules.matcher import (
    match_rule, match_table_rule, rule_matches, split_tables
)
from smartcache_cli.app.rules.models import Rule


class TestMatchRule:
    """Test cases for query level matching."""

    @pytest.fixture
    def catch_all(self):
        """Rule with no matching criteria."""
        return Rule(ttl="1h")

    def test_catch_all_matches_everything(self, catch_all):
        """Test a catch-all rule matches any query."""
        assert match_rule(["orders"], "q1", "SELECT 1", [catch_all]) is catch_all
        assert match_rule([], "", "", [catch_all]) is catch_all
        assert match_rule([""], "q2", "", [catch_all]) is catch_all

    def test_no_rules_no_match(self):
        """Test an empty rule list never matches."""
        assert match_rule(["orders"], "q1", "SELECT 1", []) is None

    def test_first_match_wins(self, catch_all):
        """Test the lowest index matching rule is returned."""
        by_id = Rule(ttl="30s", query_ids=["q1"])
        by_table = Rule(ttl="5m", tables_any=["orders"])

        assert match_rule(["orders"], "q1", "", [by_id, by_table, catch_all]) is by_id
        assert match_rule(["orders"], "q1", "", [by_table, by_id, catch_all]) is by_table
        assert match_rule(["orders"], "q9", "", [by_id, by_table, catch_all]) is by_table
        assert match_rule(["products"], "q9", "", [by_id, by_table, catch_all]) is catch_all

    def test_catch_all_shadows_later_rules(self, catch_all):
        """Test nothing after a catch-all is reachable."""
        by_id = Rule(ttl="30s", query_ids=["q1"])

        assert match_rule(["orders"], "q1", "", [catch_all, by_id]) is catch_all

    def test_tables_any_versus_exact_tables(self):
        """Test tablesAny accepts a superset query while exact tables does not."""
        any_rule = Rule(ttl="5m", tables_any=["orders"])
        exact_rule = Rule(ttl="5m", tables=["orders"])
        tables = split_tables("orders,customers")

        assert match_rule(tables, "q1", "", [any_rule]) is any_rule
        assert match_rule(tables, "q1", "", [exact_rule]) is None

    def test_exact_tables_ignores_extra_rule_tables(self):
        """Test exact tables only requires observed tables to be listed."""
        rule = Rule(ttl="5m", tables=["orders", "customers", "addresses"])

        assert rule_matches(rule, ["orders", "customers"], "q1", "") is True
        assert rule_matches(rule, ["orders", "products"], "q1", "") is False

    def test_exact_tables_needs_observed_tables(self):
        """Test a query with no tables does not satisfy exact tables."""
        rule = Rule(ttl="5m", tables=["orders"])

        assert rule_matches(rule, [], "q1", "") is False

    def test_tables_all(self):
        """Test tablesAll requires every listed table."""
        rule = Rule(ttl="5m", tables_all=["orders", "customers"])

        assert rule_matches(rule, ["orders", "customers", "products"], "q1", "") is True
        assert rule_matches(rule, ["orders"], "q1", "") is False

    def test_empty_lists_are_not_catch_all(self):
        """Test set-but-empty lists never match and are not a catch-all."""
        rule = Rule(ttl="5m", tables_any=[], tables_all=[], query_ids=[])

        assert rule.is_catch_all() is False
        assert match_rule(["orders"], "q1", "SELECT 1", [rule]) is None

    def test_empty_regex_is_not_catch_all(self):
        """Test an empty regex is set and matches any SQL."""
        rule = Rule(ttl="5m", regex="")

        assert rule.is_catch_all() is False
        assert match_rule(["orders"], "q1", "SELECT 1", [rule]) is rule

    def test_regex_search(self):
        """Test regex is searched in the SQL text."""
        rule = Rule(ttl="10m", regex="FROM audit_log")

        assert match_rule(["audit_log"], "q1", "SELECT * FROM audit_log", [rule]) is rule
        assert match_rule(["users"], "q2", "SELECT * FROM users", [rule]) is None

    def test_invalid_regex_is_non_match(self):
        """Test an invalid regex is skipped rather than raising."""
        broken = Rule(ttl="10m", regex="([unclosed")
        fallback = Rule(ttl="1h")

        assert match_rule(["orders"], "q1", "SELECT 1", [broken, fallback]) is fallback

    def test_query_ids(self):
        """Test query id membership."""
        rule = Rule(ttl="30s", query_ids=["q1", "q2"])

        assert match_rule([], "q2", "", [rule]) is rule
        assert match_rule([], "q3", "", [rule]) is None

    def test_duplicate_tables_are_collapsed(self):
        """Test repeated observed tables count once."""
        rule = Rule(ttl="5m", tables=["orders"])

        assert match_rule(["orders", "orders"], "q1", "", [rule]) is rule


class TestMatchTableRule:
    """Test cases for table level matching."""

    def test_tables_any(self):
        """Test tablesAny containment."""
        rule = Rule(ttl="5m", tables_any=["orders", "customers"])

        assert match_table_rule("customers", [rule]) is rule
        assert match_table_rule("products", [rule]) is None

    def test_exact_and_all_containment(self):
        """Test tables and tablesAll are treated as containment for one table."""
        exact = Rule(ttl="5m", tables=["orders", "customers"])
        every = Rule(ttl="1h", tables_all=["products", "prices"])

        assert match_table_rule("customers", [exact, every]) is exact
        assert match_table_rule("prices", [exact, every]) is every

    def test_ignores_query_criteria(self):
        """Test query id and regex rules do not apply to tables."""
        by_id = Rule(ttl="30s", query_ids=["q1"])
        by_regex = Rule(ttl="30s", regex=".*")
        catch_all = Rule(ttl="2d")

        assert match_table_rule("orders", [by_id, by_regex, catch_all]) is catch_all

    def test_first_match_wins(self):
        """Test precedence order is respected."""
        first = Rule(ttl="1m", tables_any=["orders"])
        second = Rule(ttl="2m", tables=["orders"])

        assert match_table_rule("orders", [first, second]) is first
        assert match_table_rule("orders", [second, first]) is second


class TestSplitTables:
    """Test cases for table list splitting."""

    def test_split(self):
        """Test comma splitting keeps order."""
        assert split_tables("orders,customers") == ["orders", "customers"]

    def test_empty(self):
        """Test empty and missing table lists."""
        assert split_tables("") == [""]
        assert split_tables(None) == [""]
