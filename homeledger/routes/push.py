from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from homeledger.dates import now_iso
from homeledger.db import new_id, query_one, with_db_cursor
from homeledger.notifications import create_notification
from homeledger.routes import CamelModel
from homeledger.security import ADMIN, SUPER_ADMIN, current_user, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/push", tags=["push"])


class SubscriptionBody(CamelModel):
    subscription: Optional[Dict[str, Any]] = None


def _endpoint(payload: SubscriptionBody) -> str:
    sub = payload.subscription
    if not sub or not sub.get("endpoint"):
        raise HTTPException(status_code=400, detail="Subscription required")
    return str(sub["endpoint"])


@router.post("/subscribe")
def subscribe(payload: SubscriptionBody, request: Request, user: Dict[str, Any] = Depends(current_user)):
    endpoint = _endpoint(payload)
    ts = now_iso()
    with with_db_cursor() as (conn, cur):
        cur.execute(
            """
            INSERT INTO push_subscriptions (id, user_id, endpoint, subscription, user_agent, created_at, last_active)
            VALUES ($1, $2, $3, $4, $5, $6, $6)
            ON CONFLICT (user_id, endpoint) DO UPDATE SET
                subscription = EXCLUDED.subscription,
                last_active = EXCLUDED.last_active
            """,
            (
                new_id("ps"), user["id"], endpoint, json.dumps(payload.subscription),
                request.headers.get("user-agent", ""), ts,
            ),
        )
        conn.commit()
    return {"message": "Subscribed to push notifications"}


@router.post("/unsubscribe")
def unsubscribe(payload: SubscriptionBody, user: Dict[str, Any] = Depends(current_user)):
    endpoint = _endpoint(payload)
    with with_db_cursor() as (conn, cur):
        cur.execute("DELETE FROM push_subscriptions WHERE user_id = $1 AND endpoint = $2", (user["id"], endpoint))
        conn.commit()
    return {"message": "Unsubscribed from push notifications"}


@router.get("/status")
def status(user: Dict[str, Any] = Depends(current_user)):
    row = query_one("SELECT COUNT(*) AS count FROM push_subscriptions WHERE user_id = $1", (user["id"],))
    count = int(row["count"] or 0)
    return {"isSubscribed": count > 0, "subscriptionCount": count}


@router.post("/test")
def test_notification(user: Dict[str, Any] = Depends(require_roles(SUPER_ADMIN, ADMIN))):
    # no VAPID keys are configured, so the test lands in the in-app inbox
    notif_id = create_notification(user["id"], "Teste", "Notificação de teste")
    logger.info("test notification %s created for %s", notif_id, user["id"])
    return {"message": "Test notification triggered", "id": notif_id}
