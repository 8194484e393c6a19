"""Reconcile a scope of the store against the provider's current view.

Given the desired set (freshly fetched) and the current set (persisted) for
one scope, issue the deletes and upserts that make the store match the
desired set by identity:

    to_delete = current \\ desired
    to_add    = desired \\ current

Both differences are computed through dicts keyed by identity.

Two modes:

- Non-exclusive (weight paths): records present on both sides are left
  alone even if their attributes drifted.  Deletes and upserts do not
  collide, so their order does not matter; an upsert of a key that already
  exists is a harmless overwrite.
- Exclusive (daily energy): a current record survives only if it is equal
  to the desired record for its identity.  Everything else in scope is
  deleted before anything is added, so the store never holds two values for
  one (kind, day).

A store error aborts the pass immediately.  The scope is then partially
reconciled; every operation is idempotent, so re-running the same scope
converges to the same end state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Hashable, Iterable

from src.ingest.base import Record, Scope
from src.ingest.sync.store import Store

logger = logging.getLogger("scalesync.ingest.sync.reconciler")


class ReconcileError(RuntimeError):
    """Raised when a store operation fails mid-reconciliation.

    Attributes:
        scope:   The scope being reconciled, or a label for unscoped writes.
        applied: Records added before the failure.
    """

    def __init__(self, scope: Scope | str, applied: int, message: str) -> None:
        super().__init__(message)
        self.scope = scope
        self.applied = applied


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass.

    Attributes:
        added:     Records written (new identities, or replacements in exclusive scopes).
        deleted:   Records removed.
        unchanged: Records left untouched.
    """

    added: int = 0
    deleted: int = 0
    unchanged: int = 0


def _by_identity(records: Iterable[Record]) -> dict[Hashable, list[Record]]:
    index: dict[Hashable, list[Record]] = {}
    for record in records:
        index.setdefault(record.identity, []).append(record)
    return index


class Reconciler:
    """Apply the minimal set of store operations for a scope.

    Usage::

        reconciler = Reconciler(store)
        added = await reconciler.reconcile(WeightDayScope(day), desired)
    """

    def __init__(self, store: Store) -> None:
        self._store = store

    @property
    def store(self) -> Store:
        return self._store

    async def reconcile(
        self,
        scope: Scope,
        desired: Iterable[Record],
        current: Iterable[Record] | None = None,
        exclusive: bool = False,
    ) -> int:
        """Reconcile ``scope`` and return the number of records added.

        Args:
            scope:     Slice of the store this pass owns.
            desired:   Provider's view of the scope.
            current:   Persisted records for the scope; read from the store when None.
            exclusive: Replace-by-value semantics with deletes before adds.

        Raises:
            ReconcileError: On the first failing store operation.
        """
        result = await self.reconcile_detailed(scope, desired, current, exclusive)
        return result.added

    async def reconcile_detailed(
        self,
        scope: Scope,
        desired: Iterable[Record],
        current: Iterable[Record] | None = None,
        exclusive: bool = False,
    ) -> ReconcileResult:
        if current is None:
            current = await self._store.get_by_scope(scope)

        # Last occurrence of a duplicated identity wins
        wanted: dict[Hashable, Record] = {r.identity: r for r in desired}
        existing = _by_identity(current)

        to_delete: list[Record] = []
        keep: set[Hashable] = set()
        for identity, records in existing.items():
            target = wanted.get(identity)
            for record in records:
                if target is None:
                    to_delete.append(record)
                elif exclusive and (record != target or identity in keep):
                    to_delete.append(record)
                else:
                    keep.add(identity)

        to_add = [r for identity, r in wanted.items() if identity not in keep]
        result = ReconcileResult(unchanged=len(keep))

        logger.debug(
            "Reconcile %s: %d current, %d desired → -%d +%d",
            scope, sum(len(v) for v in existing.values()), len(wanted),
            len(to_delete), len(to_add),
        )

        # Deletes precede adds; exclusive scopes reuse the deleted key
        for record in to_delete:
            try:
                await self._store.delete(record.key)
            except Exception as exc:
                raise ReconcileError(
                    scope, result.added, f"Delete of {record.key} in {scope} failed: {exc}"
                ) from exc
            result.deleted += 1

        for record in to_add:
            try:
                await self._store.put(record.key, record)
            except Exception as exc:
                raise ReconcileError(
                    scope, result.added, f"Upsert of {record.key} in {scope} failed: {exc}"
                ) from exc
            result.added += 1

        logger.info(
            "Reconciled %s: added=%d deleted=%d unchanged=%d",
            scope, result.added, result.deleted, result.unchanged,
        )
        return result
