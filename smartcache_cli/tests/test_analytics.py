"""
Unit tests for observed query and table statistics.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from redis.exceptions import ConnectionError as RedisConnectionError

from shared.errors import TransportError, ValidationError
from shared.test_helpers import InMemoryRedis, TestDataFactory
from smartcache_cli.app.analytics.source import (
    QueryMetricsSource, aggregate_tables, resolve_queries, resolve_tables,
    sort_queries, sort_tables
)
from smartcache_cli.app.rules.codec import rule_from_document
from smartcache_cli.app.rules.models import QueryInfo

NAMESPACE = "smartcache"


@pytest.fixture
def redis_client():
    """Create in-memory Redis holding recorded query statistics."""
    client = InMemoryRedis()
    TestDataFactory.populate_queries(client, NAMESPACE)
    return client


@pytest.fixture
def source(redis_client):
    """Create metrics source."""
    return QueryMetricsSource(redis_client)


@pytest.fixture
def rules():
    """Create stored rules."""
    return [rule_from_document(data) for data in TestDataFactory.create_test_rules()]


class TestQueryMetricsSource:
    """Test cases for QueryMetricsSource."""

    @pytest.mark.asyncio
    async def test_fetch_observed_queries(self, source):
        """Test statistics and metadata are combined per query."""
        queries = {q.id: q for q in await source.fetch_observed_queries(NAMESPACE)}

        assert set(queries) == {"q-hot", "q-orders", "q-customers", "q-audit"}
        orders = queries["q-orders"]
        assert orders.count == 300
        assert orders.mean_time == 14.25
        assert orders.table == "orders,customers"
        assert orders.sql.startswith("SELECT * FROM orders")
        assert orders.key == "smartcache:query:q-orders"

    @pytest.mark.asyncio
    async def test_missing_metadata(self, source, redis_client):
        """Test queries without a metadata hash in the namespace are left out."""
        del redis_client.hashes["smartcache:query:q-hot"]

        queries = {q.id: q for q in await source.fetch_observed_queries(NAMESPACE)}

        assert set(queries) == {"q-orders", "q-customers", "q-audit"}

    @pytest.mark.asyncio
    async def test_queries_scoped_to_namespace(self):
        """Test another application's queries are not listed."""
        client = InMemoryRedis()
        client.add_query("app-a", "qa", "orders", "SELECT * FROM orders", 10, 1.0)
        client.add_query("app-b", "qb", "users", "SELECT * FROM users", 20, 2.0)
        source = QueryMetricsSource(client)

        assert [q.id for q in await source.fetch_observed_queries("app-a")] == ["qa"]
        assert [t.name for t in await source.fetch_observed_tables("app-b")] == ["users"]

    @pytest.mark.asyncio
    async def test_clear_metrics_scoped_to_namespace(self):
        """Test clearing one application's metrics keeps the others."""
        client = InMemoryRedis()
        client.add_query("app-a", "qa", "orders", "SELECT * FROM orders", 10, 1.0)
        client.add_query("app-b", "qb", "users", "SELECT * FROM users", 20, 2.0)

        cleared = await QueryMetricsSource(client).clear_metrics("app-a")

        assert cleared == 2
        assert sorted(client.deleted_series) == ["app-a:metrics:qa:count", "app-a:metrics:qa:mean"]

    @pytest.mark.asyncio
    async def test_no_statistics(self):
        """Test nothing recorded yields no queries."""
        source = QueryMetricsSource(InMemoryRedis())

        assert await source.fetch_observed_queries(NAMESPACE) == []
        assert await source.fetch_observed_tables(NAMESPACE) == []

    @pytest.mark.asyncio
    async def test_series_without_samples(self):
        """Test a series with no samples leaves zero statistics."""
        client = InMemoryRedis()
        client.series = [["smartcache:metrics:q1:count", [["name", "query"], ["id", "q1"], ["stat", "count"]], []]]
        client.hashes["smartcache:query:q1"] = {"table": "orders", "sql": "SELECT 1"}

        queries = await QueryMetricsSource(client).fetch_observed_queries(NAMESPACE)

        assert [(q.id, q.count, q.mean_time) for q in queries] == [("q1", 0, 0.0)]

    @pytest.mark.asyncio
    async def test_malformed_reply(self):
        """Test an unexpected TS.MGET reply is a transport error."""
        client = InMemoryRedis()
        client.series = [["smartcache:metrics:q1:count", "labels", []]]

        with pytest.raises(TransportError):
            await QueryMetricsSource(client).fetch_observed_queries(NAMESPACE)

    @pytest.mark.asyncio
    async def test_redis_failure(self, source, redis_client):
        """Test Redis failures surface as TransportError."""
        redis_client.error = RedisConnectionError("Connection refused")

        with pytest.raises(TransportError):
            await source.fetch_observed_queries(NAMESPACE)
        with pytest.raises(TransportError):
            await source.clear_metrics(NAMESPACE)

    @pytest.mark.asyncio
    async def test_fetch_observed_tables(self, source):
        """Test table totals are aggregated from queries."""
        tables = {t.name: t for t in await source.fetch_observed_tables(NAMESPACE)}

        assert set(tables) == {"products", "orders", "customers", "audit_log"}
        assert tables["customers"].access_frequency == 350
        assert tables["customers"].avg_query_time == 8.0

    @pytest.mark.asyncio
    async def test_clear_metrics(self, source, redis_client):
        """Test every query series is cleared."""
        cleared = await source.clear_metrics(NAMESPACE)

        assert cleared == 8
        assert sorted(redis_client.deleted_series) == sorted(redis_client.series_keys)


class TestResolution:
    """Test cases for attaching rules to queries and tables."""

    @pytest.fixture
    def queries(self):
        """Create observed queries."""
        return [
            QueryInfo(id=q["id"], table=q["table"], sql=q["sql"], count=q["count"], mean_time=q["mean"])
            for q in TestDataFactory.create_test_queries()
        ]

    def test_resolve_queries(self, queries, rules):
        """Test each query gets its highest precedence rule."""
        resolved = {q.id: q.current_ttl for q in resolve_queries(queries, rules)}

        assert resolved == {
            "q-hot": "30s",
            "q-orders": "5m",
            "q-customers": "1h",
            "q-audit": "10m",
        }

    def test_resolve_tables(self, queries, rules):
        """Test each table gets its highest precedence table rule."""
        tables = {t.name: t for t in resolve_tables(aggregate_tables(queries), rules)}

        assert tables["orders"].rule.ttl == "5m"
        assert tables["customers"].rule.ttl == "1h"
        assert tables["products"].rule is None
        assert tables["audit_log"].rule is None

    def test_aggregate_skips_blank_tables(self):
        """Test queries without tables do not create a blank table."""
        tables = aggregate_tables([QueryInfo(id="q1", table="", count=3)])

        assert tables == []

    def test_sort_queries(self, queries):
        """Test sorting by field and direction, case insensitively."""
        by_time = sort_queries(queries, "queryTime", "DESC")
        by_count = sort_queries(queries, "accessfrequency", "asc")

        assert [q.id for q in by_time] == ["q-audit", "q-orders", "q-hot", "q-customers"]
        assert [q.id for q in by_count] == ["q-audit", "q-customers", "q-orders", "q-hot"]

    def test_sort_tables(self, queries):
        """Test sorting tables by name."""
        tables = sort_tables(aggregate_tables(queries), "name", "ASC")

        assert [t.name for t in tables] == ["audit_log", "customers", "orders", "products"]

    def test_invalid_sort(self, queries):
        """Test unknown sort fields and directions are rejected."""
        with pytest.raises(ValidationError):
            sort_queries(queries, "latency", "DESC")
        with pytest.raises(ValidationError):
            sort_tables([], "name", "sideways")
