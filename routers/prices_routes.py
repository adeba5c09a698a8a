from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from database import get_db
from schemas.price import CustomPriceIn, CustomPriceOut
from services.quote_service import list_custom_prices, remove_custom_price, set_custom_price

router = APIRouter()


@router.get("/custom", response_model=List[CustomPriceOut])
def get_custom_prices(db: Session = Depends(get_db)):
    return list_custom_prices(db)


@router.put("/custom/{symbol}", response_model=CustomPriceOut)
def put_custom_price(symbol: str, payload: CustomPriceIn, db: Session = Depends(get_db)):
    try:
        return set_custom_price(db, symbol, payload.price, payload.note)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@router.delete("/custom/{symbol}", status_code=status.HTTP_204_NO_CONTENT)
def delete_custom_price(symbol: str, db: Session = Depends(get_db)):
    if not remove_custom_price(db, symbol):
        raise HTTPException(status_code=404, detail="Custom price not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
