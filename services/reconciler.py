"""
Synced-position reconciler.

A sync replaces the positions of exactly the accounts that were fetched and
nothing else:

    new store = [p for p in store if p.account_id not in synced] + fresh

Positions of other accounts and positions with no account are never
written, so their rows stay exactly as they were. `fresh` is the complete
holding list of the synced accounts; an empty list means they now hold
nothing. Callers must not call this for a fetch that failed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Collection, List, Sequence, Tuple, TypeVar

from sqlalchemy.orm import Session

from schemas.position import PositionIn
from services.portfolio_store import atomic, load_positions
from services.position_service import build_position_row

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SyncStats:
    synced_accounts: int
    removed: int
    added: int
    preserved: int


def partition_positions(positions: Sequence[T], synced_account_ids: Collection[str]) -> Tuple[List[T], List[T]]:
    """Split into (preserved, replaced); unowned positions are always preserved."""
    preserved: List[T] = []
    replaced: List[T] = []
    for p in positions:
        account_id = getattr(p, "account_id", None)
        if account_id is not None and account_id in synced_account_ids:
            replaced.append(p)
        else:
            preserved.append(p)
    return preserved, replaced


def reconcile_positions(current: Sequence[T], synced_account_ids: Collection[str], fresh: Sequence[Any]) -> List[Any]:
    preserved, _ = partition_positions(current, synced_account_ids)
    return [*preserved, *fresh]


def apply_synced_positions(
    db: Session,
    synced_account_ids: Collection[str],
    fresh_positions: Sequence[PositionIn],
) -> SyncStats:
    """
    Stage the replacement in `db` without committing, so a caller can commit
    it together with other writes. Every fresh position must belong to one of
    the synced accounts.
    """
    synced = set(synced_account_ids)
    stray = sorted({str(p.account_id) for p in fresh_positions if p.account_id not in synced})
    if stray:
        logger.warning("sync_scope_mismatch synced=%d stray_accounts=%d", len(synced), len(stray))
        raise ValueError(f"Positions outside the synced accounts: {', '.join(stray)}")

    current = load_positions(db)
    preserved, replaced = partition_positions(current, synced)

    base = (max(p.sort_index for p in current) + 1) if current else 0
    for row in replaced:
        db.delete(row)
    # deletes must land before inserts that may reuse the same ids
    db.flush()
    db.add_all(build_position_row(p, base + i) for i, p in enumerate(fresh_positions))
    db.flush()

    stats = SyncStats(
        synced_accounts=len(synced),
        removed=len(replaced),
        added=len(fresh_positions),
        preserved=len(preserved),
    )
    logger.info(
        "positions_synced accounts=%d removed=%d added=%d preserved=%d",
        stats.synced_accounts, stats.removed, stats.added, stats.preserved,
    )
    return stats


def set_synced_positions(
    db: Session,
    synced_account_ids: Collection[str],
    fresh_positions: Sequence[PositionIn],
) -> SyncStats:
    with atomic(db):
        return apply_synced_positions(db, synced_account_ids, fresh_positions)
