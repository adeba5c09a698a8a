from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from middleware.rate_limit import limiter
from models.account import Account
from schemas.sync import RefreshOut, SyncRequest, SyncResult
from services.portfolio_store import atomic
from services.quote_service import write_quotes
from services.reconciler import apply_synced_positions
from services.refresh_service import RefreshOrchestrator, get_refresh_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

_REFRESH_STATUS_CODES = {"ok": 200, "dropped": 409, "failed": 502}


@router.post("/sync", response_model=SyncResult)
def sync_positions(payload: SyncRequest, db: Session = Depends(get_db)):
    """
    Replace the positions of `account_ids` with `positions`. Positions of
    every other account, and positions without an account, are untouched.
    """
    known = {
        row.id for row in db.query(Account.id).filter(Account.id.in_(payload.account_ids)).all()
    }
    missing = [i for i in payload.account_ids if i not in known]
    if missing:
        raise HTTPException(status_code=404, detail=f"Account not found: {', '.join(missing)}")

    quotes_stored = 0
    try:
        with atomic(db):
            for source, quotes in payload.prices.items():
                quotes_stored += write_quotes(db, source, quotes)
            stats = apply_synced_positions(db, payload.account_ids, payload.positions)
    except IntegrityError:
        raise HTTPException(status_code=409, detail="Position id already exists")
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    return SyncResult(
        synced_accounts=stats.synced_accounts,
        removed=stats.removed,
        added=stats.added,
        preserved=stats.preserved,
        quotes_stored=quotes_stored,
    )


@router.post("/refresh", response_model=RefreshOut)
@limiter.limit(settings.REFRESH_RATE_LIMIT)
async def refresh_portfolio(
    request: Request,
    response: Response,
    orchestrator: RefreshOrchestrator = Depends(get_refresh_orchestrator),
):
    outcome = await orchestrator.refresh()
    response.status_code = _REFRESH_STATUS_CODES.get(outcome.status, 200)
    detail = "Refresh already in progress" if outcome.status == "dropped" else None
    return RefreshOut(**outcome.model_dump(), detail=detail)
