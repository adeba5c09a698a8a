"""
Whole-collection access to the account and position store.

Readers get the full ordered lists; writers wrap each state transition in
`atomic()` so an account and its positions never change in separate commits.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from models.account import Account
from models.position import Position

logger = logging.getLogger(__name__)


@dataclass
class PortfolioState:
    accounts: List[Account] = field(default_factory=list)
    positions: List[Position] = field(default_factory=list)


def load_accounts(db: Session) -> List[Account]:
    return db.query(Account).order_by(Account.added_at.asc(), Account.id.asc()).all()


def load_positions(db: Session) -> List[Position]:
    return db.query(Position).order_by(Position.sort_index.asc(), Position.id.asc()).all()


def load_state(db: Session) -> PortfolioState:
    return PortfolioState(accounts=load_accounts(db), positions=load_positions(db))


def next_sort_index(db: Session) -> int:
    current = db.query(func.max(Position.sort_index)).scalar()
    return 0 if current is None else int(current) + 1


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """One commit for the whole block; any error rolls every change back."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("store_transaction_rolled_back")
        raise
