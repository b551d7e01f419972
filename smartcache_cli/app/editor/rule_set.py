"""
In-memory editing session over the stored rule list.

The working copy is the baseline list with newly proposed rules in front
of it. Pending changes are tracked by working-copy index:

- new rows: proposed rules without a stored position yet;
- pending updates: baseline rows replaced by an edited rule, with the
  original kept as a backup keyed by stored index and the edited rule's
  content hash;
- pending deletes: baseline rows marked for removal.

An index is never both pending-update and pending-delete, and new rows
never appear in either set.
"""

from typing import Dict, List, Optional, Set, Tuple

from shared.errors import ValidationError
from shared.logging import get_logger
from ..rules.codec import rule_hash
from ..rules.models import Rule, RuleRow, RuleStatus
from ..store.rule_store import RuleStoreClient


class RuleSetEditor:
    """Tracks pending add/update/delete operations before commit."""

    def __init__(self, store: RuleStoreClient, namespace: str):
        self.store = store
        self.namespace = namespace
        self.logger = get_logger("smartcache.editor.rule_set")

        self.baseline: List[Rule] = []
        self.baseline_version: Optional[str] = None
        self._rules: List[Rule] = []
        self._new_rows: Set[int] = set()
        self._pending_update: Set[int] = set()
        self._pending_delete: Set[int] = set()
        self._backups: Dict[Tuple[int, int], Rule] = {}

    async def load(self) -> List[RuleRow]:
        """Read a fresh baseline and discard all pending changes."""
        snapshot = await self.store.read_latest_snapshot(self.namespace)
        self.baseline = snapshot.rules
        self.baseline_version = snapshot.version
        self._reset()
        self.logger.info("Loaded rule baseline", version=snapshot.version, count=len(self.baseline))
        return self.rows

    def _reset(self):
        self._rules = [rule.copy() for rule in self.baseline]
        self._new_rows.clear()
        self._pending_update.clear()
        self._pending_delete.clear()
        self._backups.clear()

    @property
    def rows(self) -> List[RuleRow]:
        """Working copy with per-row status, highest precedence first."""
        return [RuleRow(rule=rule, status=self.status(index)) for index, rule in enumerate(self._rules)]

    @property
    def has_pending_changes(self) -> bool:
        return bool(self._new_rows or self._pending_update or self._pending_delete)

    def status(self, index: int) -> RuleStatus:
        if index in self._new_rows:
            return RuleStatus.NEW
        if index in self._pending_delete:
            return RuleStatus.DELETE
        if index in self._pending_update:
            return RuleStatus.EDITING
        return RuleStatus.CURRENT

    def _check_index(self, index: int):
        if index < 0 or index >= len(self._rules):
            raise ValidationError(
                f"No rule at position {index}",
                {"index": index, "size": len(self._rules)}
            )

    @staticmethod
    def _shift(indices: Set[int], start: int, delta: int) -> Set[int]:
        return {i + delta if i >= start else i for i in indices}

    def _shift_all(self, start: int, delta: int):
        self._new_rows = self._shift(self._new_rows, start, delta)
        self._pending_update = self._shift(self._pending_update, start, delta)
        self._pending_delete = self._shift(self._pending_delete, start, delta)

    def propose_add(self, rule: Rule) -> int:
        """Insert a new rule at the front of the working copy."""
        self._shift_all(0, 1)
        self._rules.insert(0, rule)
        self._new_rows.add(0)
        self.logger.debug("Proposed new rule", ttl=rule.ttl)
        return 0

    def propose_update(self, index: int, rule: Rule):
        """Replace the rule at ``index``; supersedes a pending delete."""
        self._check_index(index)
        if index in self._new_rows:
            self._rules[index] = rule
            return

        current = self._rules[index]
        if index in self._pending_update:
            original = self._backups.pop(self._backup_key(index, current))
        else:
            original = current
        self._backups[self._backup_key(index, rule)] = original

        self._rules[index] = rule
        self._pending_delete.discard(index)
        self._pending_update.add(index)
        self.logger.debug("Proposed rule update", index=index, ttl=rule.ttl)

    def propose_delete(self, index: int):
        """Drop a new row outright, or mark a stored row for deletion."""
        self._check_index(index)
        if index in self._new_rows:
            del self._rules[index]
            self._new_rows.discard(index)
            self._shift_all(index + 1, -1)
            self.logger.debug("Discarded new rule", index=index)
            return

        if index in self._pending_update:
            self._restore(index)
        self._pending_delete.add(index)
        self.logger.debug("Proposed rule delete", index=index)

    def revert(self, index: int):
        """Cancel any pending change on ``index``."""
        self._check_index(index)
        self._pending_delete.discard(index)
        if index in self._pending_update:
            self._restore(index)

    def _backup_key(self, index: int, rule: Rule) -> Tuple[int, int]:
        # New rows always occupy the front, so this is the stored index.
        return index - len(self._new_rows), rule_hash(rule)

    def _restore(self, index: int):
        edited = self._rules[index]
        self._rules[index] = self._backups.pop(self._backup_key(index, edited))
        self._pending_update.discard(index)

    def changes(self) -> Tuple[List[Rule], Dict[int, Rule], Dict[int, Rule]]:
        """Partition the session into (adds, updates, deletes) by stored index.

        Adds are ordered so that prepending them one by one reproduces the
        working-copy order.
        """
        offset = len(self._new_rows)
        rules_to_add = [self._rules[i] for i in sorted(self._new_rows, reverse=True)]
        rules_to_update = {i - offset: self._rules[i] for i in sorted(self._pending_update)}
        rules_to_delete = {i - offset: self._rules[i] for i in sorted(self._pending_delete)}
        return rules_to_add, rules_to_update, rules_to_delete

    async def commit(self) -> str:
        """Commit pending changes and reload the baseline."""
        rules_to_add, rules_to_update, rules_to_delete = self.changes()
        version = await self.store.reconcile_and_commit(
            rules_to_add, rules_to_update, rules_to_delete, self.namespace
        )
        self.logger.info(
            "Committed rule changes",
            version=version,
            added=len(rules_to_add),
            updated=len(rules_to_update),
            deleted=len(rules_to_delete)
        )
        await self.load()
        return version
