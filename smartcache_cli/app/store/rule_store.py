"""
Redis-backed persistence for the ordered rule list.

Every commit writes the complete resulting list as a new version under
``<namespace>:config``. Reads always use the newest version.
"""

from enum import Enum
from typing import Callable, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from shared.config import config_key
from shared.errors import OutOfSyncError, TransportError
from shared.logging import get_logger
from ..rules.codec import decode_document, decode_fields, encode_document, encode_fields
from ..rules.models import Rule, RuleSnapshot

DOCUMENT_VERSION = "document"


class RuleEncoding(str, Enum):
    """How the rule list is stored."""
    STREAM = "stream"
    JSON = "json"


def apply_changes(
    current: List[Rule],
    rules_to_add: List[Rule],
    rules_to_update: Dict[int, Rule],
    rules_to_delete: Dict[int, Rule]
) -> List[Rule]:
    """Apply an edit batch to ``current`` and return the resulting list.

    Raises OutOfSyncError without touching anything when an update or
    delete index does not exist in ``current``.
    """
    size = len(current)
    stale = sorted(
        index for index in set(rules_to_update) | set(rules_to_delete)
        if index < 0 or index >= size
    )
    if stale:
        raise OutOfSyncError(
            "Rule list changed since it was read; refresh and try again",
            {"indices": stale, "size": size}
        )

    rules = list(current)
    for index, rule in rules_to_update.items():
        rules[index] = rule

    for index in sorted(rules_to_delete, reverse=True):
        del rules[index]

    for rule in rules_to_add:
        rules.insert(0, rule)

    return rules


class RuleStoreClient:
    """Reads and commits rule list versions."""

    def __init__(
        self,
        redis_url: str,
        encoding: RuleEncoding = RuleEncoding.STREAM,
        timeout: float = 5.0,
        client: Optional[redis.Redis] = None
    ):
        self.redis_url = redis_url
        self.encoding = RuleEncoding(encoding)
        self.timeout = timeout
        self.logger = get_logger("smartcache.store.rules")
        self.redis: Optional[redis.Redis] = client

    async def start(self):
        """Connect to Redis."""
        try:
            if self.redis is None:
                self.redis = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=self.timeout,
                    socket_timeout=self.timeout,
                )

            await self.redis.ping()

            self.logger.info("Rule store connected", encoding=self.encoding.value)

        except RedisError as e:
            self.logger.error("Failed to connect rule store", error=str(e))
            raise TransportError(f"Unable to connect to Redis: {e}") from e

    async def stop(self):
        """Close the Redis connection."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Rule store disconnected")

    async def __aenter__(self) -> "RuleStoreClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    @property
    def client(self) -> redis.Redis:
        if self.redis is None:
            raise TransportError("Rule store is not connected")
        return self.redis

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            raise TransportError(f"Redis ping failed: {e}") from e

    async def read_latest_snapshot(self, namespace: str) -> RuleSnapshot:
        """Fetch the newest committed version of the rule list."""
        key = config_key(namespace)
        try:
            snapshot = await self._read(self.client, key)
        except RedisError as e:
            self.logger.error("Error reading rules", key=key, error=str(e))
            raise TransportError(f"Unable to read rules from '{key}': {e}") from e

        self.logger.debug(
            "Read rules",
            key=key,
            version=snapshot.version,
            count=len(snapshot.rules),
            warnings=len(snapshot.warnings)
        )
        return snapshot

    async def read_latest_rules(self, namespace: str) -> List[Rule]:
        """Fetch the newest rule list; empty when nothing was committed yet."""
        snapshot = await self.read_latest_snapshot(namespace)
        return snapshot.rules

    async def commit_rules(self, rules: List[Rule], namespace: str) -> str:
        """Write ``rules`` as the complete new version."""
        return await self._commit(namespace, lambda current: list(rules))

    async def commit_append(self, rules: List[Rule], namespace: str) -> str:
        """Prepend ``rules`` to the current list and write a new version."""
        return await self._commit(namespace, lambda current: list(rules) + current)

    async def reconcile_and_commit(
        self,
        rules_to_add: List[Rule],
        rules_to_update: Dict[int, Rule],
        rules_to_delete: Dict[int, Rule],
        namespace: str
    ) -> str:
        """Apply an edit batch against the freshly read list and commit it."""
        return await self._commit(
            namespace,
            lambda current: apply_changes(current, rules_to_add, rules_to_update, rules_to_delete)
        )

    async def _commit(self, namespace: str, transform: Callable[[List[Rule]], List[Rule]]) -> str:
        key = config_key(namespace)
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                snapshot = await self._read(pipe, key)
                rules = transform(list(snapshot.rules))

                pipe.multi()
                self._queue_write(pipe, key, rules)
                results = await pipe.execute()

        except WatchError as e:
            self.logger.warning("Rule configuration changed during commit", key=key)
            raise OutOfSyncError(
                "Rule configuration was modified concurrently; refresh and try again",
                {"key": key}
            ) from e
        except RedisError as e:
            self.logger.error("Error committing rules", key=key, error=str(e))
            raise TransportError(f"Unable to commit rules to '{key}': {e}") from e

        version = results[0] if self.encoding == RuleEncoding.STREAM else DOCUMENT_VERSION
        self.logger.info(
            "Committed rules",
            key=key,
            version=version,
            previous_version=snapshot.version,
            count=len(rules)
        )
        return version

    async def _read(self, conn, key: str) -> RuleSnapshot:
        try:
            if self.encoding == RuleEncoding.STREAM:
                entries = await conn.xrevrange(key, count=1)
                if not entries:
                    return RuleSnapshot()
                version, fields = entries[0]
                decoded = decode_fields(fields)
            else:
                raw = await conn.execute_command("JSON.GET", key, "$")
                if raw is None:
                    return RuleSnapshot()
                version = DOCUMENT_VERSION
                decoded = decode_document(raw)
        except ValueError as e:
            raise TransportError(f"Unreadable rule configuration at '{key}': {e}") from e

        return RuleSnapshot(
            rules=decoded.rules,
            version=version,
            cleared=decoded.cleared and not decoded.rules,
            warnings=decoded.warnings
        )

    def _queue_write(self, pipe, key: str, rules: List[Rule]) -> None:
        if self.encoding == RuleEncoding.STREAM:
            pipe.xadd(key, encode_fields(rules))
        else:
            pipe.execute_command("JSON.SET", key, "$", encode_document(rules))
