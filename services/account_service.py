from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy.orm import Session

from models.account import Account
from models.position import Position
from schemas.account import (
    AccountConnection,
    AccountCreate,
    AccountUpdate,
    ExchangeConnection,
    ManualConnection,
    WalletConnection,
    connection_adapter,
)
from services.classifier import default_classifier
from services.portfolio_store import atomic, load_accounts, load_positions
from utils.common_helpers import collapse_ws, utcnow

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")
_PAREN_NAME_RE = re.compile(r"^(.+?)\s*\(")

PARTITIONS = ("wallet", "exchange", "manual", "brokerage", "cash")


def to_slug(name: str) -> str:
    """Dedup key for manual accounts: "Chase  Bank" -> "chase-bank". Punctuation is kept."""
    return _WS_RE.sub("-", (name or "").strip().lower())


def normalize_account_name(name: str) -> str:
    return collapse_ws(name).lower()


def extract_cash_account_name(position_name: str) -> str:
    """"Revolut (EUR)" -> "Revolut"; an empty name falls back to "Manual"."""
    m = _PAREN_NAME_RE.match(position_name or "")
    name = m.group(1).strip() if m else (position_name or "").strip()
    return name or "Manual"


def parse_connection(account: Account) -> AccountConnection:
    return connection_adapter.validate_python(account.connection)


def _resolve_slug(payload: AccountCreate) -> Optional[str]:
    if payload.slug is True:
        return to_slug(payload.name)
    if isinstance(payload.slug, str) and payload.slug.strip():
        return to_slug(payload.slug)
    return None


# ---------- queries ----------
def get_account(db: Session, account_id: str) -> Optional[Account]:
    return db.get(Account, account_id)


def list_accounts(db: Session) -> List[Account]:
    return load_accounts(db)


def _find_manual_by_name(db: Session, name: str) -> Optional[Account]:
    wanted = normalize_account_name(name)
    for account in load_accounts(db):
        if isinstance(parse_connection(account), ManualConnection) and normalize_account_name(account.name) == wanted:
            return account
    return None


# ---------- mutations ----------
def add_account(db: Session, payload: AccountCreate) -> str:
    """
    Create an account and return its id. Creating a manual account whose
    name or slug already exists returns the existing id instead.
    """
    if isinstance(payload.connection, ManualConnection):
        existing = _find_manual_by_name(db, payload.name)
        if existing:
            logger.info("account_dedup_hit id=%s rule=name", existing.id)
            return existing.id

    slug = _resolve_slug(payload)
    if slug:
        existing = db.query(Account).filter(Account.slug == slug).first()
        if existing:
            logger.info("account_dedup_hit id=%s rule=slug", existing.id)
            return existing.id

    account = Account(
        id=str(uuid.uuid4()),
        name=payload.name,
        is_active=payload.is_active,
        connection=payload.connection.model_dump(),
        slug=slug,
        added_at=utcnow(),
    )
    with atomic(db):
        db.add(account)
    logger.info("account_added id=%s kind=%s", account.id, payload.connection.kind)
    return account.id


def update_account(db: Session, account_id: str, payload: Union[AccountUpdate, dict]) -> Optional[Account]:
    account = db.get(Account, account_id)
    if account is None:
        logger.info("account_update_skipped id=%s reason=not_found", account_id)
        return None

    if isinstance(payload, dict):
        payload = AccountUpdate.model_validate(payload)
    changes = payload.model_dump(exclude_unset=True)
    # the dedup key is fixed at creation
    if changes.pop("slug", None) is not None:
        logger.debug("account_update_slug_ignored id=%s", account_id)

    with atomic(db):
        if "name" in changes:
            account.name = changes["name"]
        if "is_active" in changes:
            account.is_active = changes["is_active"]
        if changes.get("connection") is not None:
            account.connection = payload.connection.model_dump()
    return account


def remove_account(db: Session, account_id: str) -> bool:
    """Delete an account and every position it owns in a single commit."""
    account = db.get(Account, account_id)
    if account is None:
        logger.info("account_remove_skipped id=%s reason=not_found", account_id)
        return False

    with atomic(db):
        owned = db.query(Position).filter(Position.account_id == account_id).all()
        for position in owned:
            db.delete(position)
        db.delete(account)
    logger.info("account_removed id=%s positions_removed=%d", account_id, len(owned))
    return True


# ---------- partitions ----------
@dataclass
class ManualHoldings:
    has_any: bool = False
    has_cash: bool = False
    has_equity: bool = False
    has_metals: bool = False
    has_stablecoin: bool = False
    has_other: bool = False


def build_manual_holdings(positions: Iterable[Position]) -> Dict[str, ManualHoldings]:
    holdings: Dict[str, ManualHoldings] = {}
    for p in positions:
        if not p.account_id:
            continue
        flags = holdings.setdefault(p.account_id, ManualHoldings())
        flags.has_any = True
        asset_class = default_classifier.effective_asset_class(p)
        if asset_class == "cash":
            flags.has_cash = True
        elif asset_class == "equity":
            flags.has_equity = True
        elif asset_class == "metals":
            flags.has_metals = True
        else:
            flags.has_other = True
        if asset_class == "crypto" and default_classifier.is_stablecoin(p.symbol):
            flags.has_stablecoin = True
    return holdings


def manual_account_role(flags: Optional[ManualHoldings]) -> str:
    if flags is None or not flags.has_any:
        return "empty"
    cash_like = flags.has_cash or flags.has_stablecoin
    brokerage_like = flags.has_equity or flags.has_metals
    if cash_like and brokerage_like:
        return "mixed"
    if brokerage_like:
        return "brokerage"
    if cash_like:
        return "cash"
    return "other"


@dataclass
class AccountPartitions:
    wallet: List[Account] = field(default_factory=list)
    exchange: List[Account] = field(default_factory=list)
    manual: List[Account] = field(default_factory=list)
    brokerage: List[Account] = field(default_factory=list)
    cash: List[Account] = field(default_factory=list)

    def get(self, name: str) -> List[Account]:
        if name not in PARTITIONS:
            raise ValueError(f"Unknown partition: {name}")
        return getattr(self, name)


def partition_accounts(
    accounts: Iterable[Account],
    positions: Iterable[Position] = (),
    *,
    include_empty: bool = True,
) -> AccountPartitions:
    parts = AccountPartitions()
    holdings = build_manual_holdings(positions)
    for account in accounts:
        connection = parse_connection(account)
        if isinstance(connection, WalletConnection):
            parts.wallet.append(account)
        elif isinstance(connection, ExchangeConnection):
            parts.exchange.append(account)
        elif isinstance(connection, ManualConnection):
            parts.manual.append(account)
            role = manual_account_role(holdings.get(account.id))
            if role == "empty":
                if include_empty:
                    parts.brokerage.append(account)
                    parts.cash.append(account)
                continue
            if role in ("brokerage", "mixed"):
                parts.brokerage.append(account)
            if role in ("cash", "mixed"):
                parts.cash.append(account)
        else:
            raise TypeError(f"Unhandled connection type: {type(connection).__name__}")
    return parts


def get_partitions(db: Session, *, include_empty: bool = True) -> AccountPartitions:
    return partition_accounts(load_accounts(db), load_positions(db), include_empty=include_empty)


# ---------- repair ----------
def link_orphaned_cash_positions(db: Session) -> int:
    """
    Attach cash positions that have no account to a manual account named
    after the position ("Revolut (EUR)" -> "Revolut"), creating it if needed.
    Returns the number of positions linked.
    """
    accounts = load_accounts(db)
    by_name: Dict[str, str] = {}
    by_slug: Dict[str, str] = {}
    for account in accounts:
        if isinstance(parse_connection(account), ManualConnection):
            by_name[normalize_account_name(account.name)] = account.id
            if account.slug:
                by_slug[account.slug] = account.id

    linked = 0
    created = 0
    with atomic(db):
        for position in load_positions(db):
            if position.account_id or default_classifier.effective_asset_class(position) != "cash":
                continue
            account_name = extract_cash_account_name(position.name)
            normalized = normalize_account_name(account_name)
            slug = to_slug(account_name)
            account_id = by_name.get(normalized) or by_slug.get(slug)
            if account_id is None:
                account = Account(
                    id=str(uuid.uuid4()),
                    name=account_name,
                    is_active=True,
                    connection=ManualConnection().model_dump(),
                    added_at=utcnow(),
                )
                db.add(account)
                account_id = account.id
                by_name[normalized] = account_id
                by_slug[slug] = account_id
                created += 1
            position.account_id = account_id
            linked += 1
    if linked:
        logger.info("orphaned_cash_linked positions=%d accounts_created=%d", linked, created)
    return linked
