"""PayPal webhook receiver."""
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from quota_engine.api.deps import get_lifecycle_manager, get_webhook_verifier
from quota_engine.services.gateway import PayPalGateway
from quota_engine.services.lifecycle import SubscriptionLifecycleManager
from quota_engine.services.notifications import NotificationProcessor


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/paypal")
async def paypal_webhook(
    request: Request,
    verifier: PayPalGateway = Depends(get_webhook_verifier),
    manager: SubscriptionLifecycleManager = Depends(get_lifecycle_manager),
):
    body = await request.body()
    try:
        event = json.loads(body)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook payload",
        ) from exc
    if not isinstance(event, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook payload",
        )

    if not await verifier.verify_webhook(request.headers, body):
        logger.warning(f"Rejected unverified PayPal webhook {event.get('id')}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature",
        )

    action = await NotificationProcessor(manager).process(event)
    return {"received": True, "action": action}
