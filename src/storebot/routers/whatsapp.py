"""
WhatsApp webhook router for StoreBot.

Handles Meta webhook verification for both bots and hands inbound
deliveries to the flow router. Each merchant's customer bot posts to its own
URL (/webhook/{owner_id}); the admin bot shares a single number and URL.
"""

import json
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from slowapi import Limiter
from slowapi.util import get_remote_address

from ..config import settings
from ..db import SessionLocal
from ..schemas import Audience, OwnerContext
from ..services.flow_context import FlowServices
from ..services.router import FlowRouter
from ..utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

# Initialize rate limiter (uses client IP address as key)
limiter = Limiter(key_func=get_remote_address)

_flow_router: Optional[FlowRouter] = None


def get_flow_router() -> FlowRouter:
    """
    FastAPI dependency providing the process-wide FlowRouter.

    Built lazily so tests can override the dependency before any database
    engine is touched.
    """
    global _flow_router
    if _flow_router is None:
        _flow_router = FlowRouter(FlowServices(SessionLocal))
    return _flow_router


def _verify(hub_mode: str, hub_verify_token: str, hub_challenge: str, expected_token: str) -> Response:
    logger.info(
        "Webhook verification attempt",
        extra={"hub_mode": hub_mode, "has_token": bool(hub_verify_token)},
    )

    if hub_mode != "subscribe":
        logger.warning(
            "Webhook verification failed: invalid hub.mode",
            extra={"hub_mode": hub_mode},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid hub.mode - expected 'subscribe'",
        )

    if not expected_token or hub_verify_token != expected_token:
        logger.warning(
            "Webhook verification failed: invalid verify token",
            extra={"provided_token_length": len(hub_verify_token)},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid verify token",
        )

    logger.info(
        "Webhook verification successful",
        extra={"challenge_length": len(hub_challenge)},
    )
    return Response(content=hub_challenge, media_type="text/plain")


async def _read_payload(request: Request) -> dict[str, Any]:
    try:
        payload = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Webhook body is not valid JSON")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payload must be a JSON object")
    return payload


@router.get("/webhook")
async def verify_webhook(
    hub_mode: str = Query(alias="hub.mode"),
    hub_verify_token: str = Query(alias="hub.verify_token"),
    hub_challenge: str = Query(alias="hub.challenge"),
) -> Response:
    """
    Customer bot webhook verification endpoint (GET).

    Returns the challenge string when hub.mode is "subscribe" and the token
    matches WEBHOOK_VERIFY_TOKEN.

    Raises:
        HTTPException: 403 if verification fails
    """
    return _verify(hub_mode, hub_verify_token, hub_challenge, settings.webhook_verify_token)


@router.get("/admin/webhook")
async def verify_admin_webhook(
    hub_mode: str = Query(alias="hub.mode"),
    hub_verify_token: str = Query(alias="hub.verify_token"),
    hub_challenge: str = Query(alias="hub.challenge"),
) -> Response:
    """Admin bot webhook verification endpoint (GET)."""
    return _verify(hub_mode, hub_verify_token, hub_challenge, settings.admin_webhook_verify_token)


@router.post("/webhook/{owner_id}")
@limiter.limit("120/minute")
async def receive_webhook(
    request: Request,
    owner_id: int,
    flow_router: FlowRouter = Depends(get_flow_router),
) -> dict[str, str]:
    """
    Customer bot webhook receiver (POST).

    Answers 200 for every parseable delivery, including ones that produce no
    reply, so the provider does not redeliver on business failures.

    Raises:
        HTTPException: 404 for an unknown merchant, 400 for a body that is not JSON
    """
    owner = await flow_router.services.owners.get(owner_id)
    if owner is None:
        logger.warning("Webhook for unknown owner", extra={"owner_id": owner_id})
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Owner not found")

    payload = await _read_payload(request)
    logger.info(
        "Webhook received",
        extra={"owner_id": owner_id, "payload_keys": list(payload.keys()), "object_type": payload.get("object")},
    )

    context = OwnerContext(
        audience=Audience.CUSTOMER,
        owner_id=owner.id,
        phone_number_id=owner.phone_number_id,
        access_token=owner.access_token,
    )
    action = await flow_router.handle_inbound_event(context, payload)
    logger.info("Webhook handled", extra={"owner_id": owner_id, "action": action.value})
    return {"status": "received"}


@router.post("/admin/webhook")
@limiter.limit("120/minute")
async def receive_admin_webhook(
    request: Request,
    flow_router: FlowRouter = Depends(get_flow_router),
) -> dict[str, str]:
    """
    Admin bot webhook receiver (POST).

    The sender is resolved to a merchant by WhatsApp id inside the flow
    router.

    Raises:
        HTTPException: 400 for a body that is not JSON
    """
    payload = await _read_payload(request)
    logger.info(
        "Admin webhook received",
        extra={"payload_keys": list(payload.keys()), "object_type": payload.get("object")},
    )

    context = OwnerContext(
        audience=Audience.ADMIN,
        phone_number_id=settings.admin_phone_number_id,
        access_token=settings.admin_access_token,
    )
    action = await flow_router.handle_inbound_event(context, payload)
    logger.info("Admin webhook handled", extra={"action": action.value})
    return {"status": "received"}
