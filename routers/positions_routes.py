from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from database import get_db
from schemas.position import AssetClassOverrideIn, EnrichedPosition, PositionIn, PositionOut, PositionUpdate
from services.portfolio_service import get_enriched_positions
from services.position_service import add_position, remove_position, set_asset_class_override, update_position

router = APIRouter()


def _raise_for_value_error(exc: ValueError) -> None:
    message = str(exc)
    code = 404 if "not found" in message.lower() else 409
    raise HTTPException(status_code=code, detail=message)


@router.get("", response_model=List[EnrichedPosition])
def get_positions(
    hide_dust: bool = Query(False, description="Hide positions worth less than the dust threshold"),
    db: Session = Depends(get_db),
):
    return get_enriched_positions(db, hide_dust=hide_dust)


@router.post("", response_model=PositionOut, status_code=status.HTTP_201_CREATED)
def create_position(payload: PositionIn, db: Session = Depends(get_db)):
    try:
        return add_position(db, payload)
    except ValueError as exc:
        _raise_for_value_error(exc)


@router.patch("/{position_id}", status_code=status.HTTP_204_NO_CONTENT)
def patch_position(position_id: str, payload: PositionUpdate, db: Session = Depends(get_db)):
    try:
        update_position(db, position_id, payload)
    except ValueError as exc:
        _raise_for_value_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{position_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_position(position_id: str, db: Session = Depends(get_db)):
    remove_position(db, position_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{position_id}/asset-class", response_model=PositionOut)
def put_asset_class_override(position_id: str, payload: AssetClassOverrideIn, db: Session = Depends(get_db)):
    position = set_asset_class_override(db, position_id, payload.asset_class)
    if position is None:
        raise HTTPException(status_code=404, detail="Position not found")
    return position
