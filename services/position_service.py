from __future__ import annotations

import logging
import uuid
from typing import List, Optional

from sqlalchemy.orm import Session

from models.account import Account
from models.position import Position
from schemas.position import PositionIn, PositionUpdate
from services.classifier import default_classifier
from services.portfolio_store import atomic, load_positions, next_sort_index

logger = logging.getLogger(__name__)


def build_position_row(payload: PositionIn, sort_index: int) -> Position:
    """Classify an incoming position and turn it into an unsaved row."""
    asset_class = default_classifier.get_asset_class(payload.symbol, payload.asset_class)
    row = Position(
        id=payload.id or uuid.uuid4().hex,
        asset_class=asset_class,
        asset_class_override=payload.asset_class_override,
        symbol=payload.symbol,
        name=payload.name or payload.symbol,
        amount=payload.amount,
        cost_basis=payload.cost_basis,
        purchase_date=payload.purchase_date,
        account_id=payload.account_id,
        chain=payload.chain,
        protocol=payload.protocol,
        detail=payload.detail,
        price_key=payload.price_key,
        is_debt=payload.is_debt,
        unlock_at=payload.unlock_at,
        sort_index=sort_index,
    )
    row.is_debt = default_classifier.classify(row).is_debt
    return row


def list_positions(db: Session) -> List[Position]:
    return load_positions(db)


def get_position(db: Session, position_id: str) -> Optional[Position]:
    return db.get(Position, position_id)


def _require_account(db: Session, account_id: Optional[str]) -> None:
    if account_id is not None and db.get(Account, account_id) is None:
        raise ValueError("Account not found")


def add_position(db: Session, payload: PositionIn) -> Position:
    if payload.id and db.get(Position, payload.id) is not None:
        raise ValueError("Position with this id already exists")
    _require_account(db, payload.account_id)

    with atomic(db):
        row = build_position_row(payload, next_sort_index(db))
        db.add(row)
    logger.info("position_added id=%s asset_class=%s owned=%s", row.id, row.asset_class, bool(row.account_id))
    return row


def update_position(db: Session, position_id: str, payload: PositionUpdate) -> Optional[Position]:
    position = db.get(Position, position_id)
    if position is None:
        logger.info("position_update_skipped id=%s reason=not_found", position_id)
        return None

    changes = payload.model_dump(exclude_unset=True)
    if "account_id" in changes:
        _require_account(db, changes["account_id"])

    with atomic(db):
        declared = changes.pop("asset_class", None)
        for field_name, value in changes.items():
            setattr(position, field_name, value)
        if declared is not None or "symbol" in changes:
            position.asset_class = default_classifier.get_asset_class(
                position.symbol, declared or position.asset_class
            )
    return position


def remove_position(db: Session, position_id: str) -> bool:
    position = db.get(Position, position_id)
    if position is None:
        logger.info("position_remove_skipped id=%s reason=not_found", position_id)
        return False
    with atomic(db):
        db.delete(position)
    logger.info("position_removed id=%s", position_id)
    return True


def set_asset_class_override(db: Session, position_id: str, asset_class: Optional[str]) -> Optional[Position]:
    """Pin (or clear, with None) the asset class used for reporting."""
    position = db.get(Position, position_id)
    if position is None:
        return None
    with atomic(db):
        position.asset_class_override = asset_class
    return position
