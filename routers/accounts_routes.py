from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from database import get_db
from schemas.account import AccountCreate, AccountCreated, AccountOut, AccountUpdate
from services.account_service import (
    PARTITIONS,
    add_account,
    get_account,
    get_partitions,
    link_orphaned_cash_positions,
    list_accounts,
    remove_account,
    update_account,
)

router = APIRouter()


@router.get("", response_model=List[AccountOut])
def get_accounts(
    partition: Optional[str] = Query(None, description=f"One of: {', '.join(PARTITIONS)}"),
    include_empty: bool = Query(True, description="List empty manual accounts under brokerage and cash"),
    db: Session = Depends(get_db),
):
    if partition is None:
        return list_accounts(db)
    try:
        return get_partitions(db, include_empty=include_empty).get(partition)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@router.post("", response_model=AccountCreated, status_code=status.HTTP_201_CREATED)
def create_account(payload: AccountCreate, db: Session = Depends(get_db)):
    return AccountCreated(id=add_account(db, payload))


@router.get("/{account_id}", response_model=AccountOut)
def get_single_account(account_id: str, db: Session = Depends(get_db)):
    account = get_account(db, account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


@router.patch("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
def patch_account(account_id: str, payload: AccountUpdate, db: Session = Depends(get_db)):
    # unknown ids are a no-op
    update_account(db, account_id, payload)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_account(account_id: str, db: Session = Depends(get_db)):
    remove_account(db, account_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/link-orphaned-cash")
def link_orphaned_cash(db: Session = Depends(get_db)):
    return {"linked": link_orphaned_cash_positions(db)}
