from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from homeledger.planning import analyze_user
from homeledger.security import current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai-planning", tags=["ai-planning"])


@router.get("/analyze")
def analyze(refresh: bool = False, user: Dict[str, Any] = Depends(current_user)):
    try:
        return analyze_user(user["id"], refresh=refresh)
    except Exception as e:
        logger.error("analysis failed for %s: %s", user["id"], e)
        raise HTTPException(status_code=500, detail=str(e))
