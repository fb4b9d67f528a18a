from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException

from homeledger.market import DEFAULT_PROVIDER, currency_history, get_exchange_rates, get_inflation_history

router = APIRouter(prefix="/market", tags=["market"])


@router.get("/rates")
def rates(provider: Optional[str] = None):
    return get_exchange_rates(provider)


@router.get("/inflation")
def inflation():
    return get_inflation_history()


@router.get("/currency-history/{base}/{target}")
def history(base: str, target: str, period: str = "1A", provider: str = DEFAULT_PROVIDER):
    try:
        return currency_history(base, target, period, provider)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
