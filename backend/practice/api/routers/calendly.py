from __future__ import annotations
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from practice import config as settings
from practice.db import get_db
from practice.services.calendly_service import (
    SIGNATURE_HEADERS, CalendlyPayloadError, process_webhook, verify_signature
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendly", tags=["calendly"])


@router.get("/webhook")
async def webhook_status():
    return {
        "message": "Calendly webhook endpoint is active",
        "url": "/api/calendly/webhook",
    }


@router.post("/webhook")
async def calendly_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    raw = await request.body()
    signature = next((request.headers[h] for h in SIGNATURE_HEADERS if request.headers.get(h)), "")
    signing_key = settings.CALENDLY_WEBHOOK_SIGNING_KEY
    if not signing_key:
        logger.warning("[calendly] CALENDLY_WEBHOOK_SIGNING_KEY not set, signature not verified")
    elif signature and not verify_signature(raw, signature, signing_key):
        logger.error("[calendly] invalid webhook signature")
        raise HTTPException(401, "Invalid webhook signature")

    try:
        payload = json.loads(raw or b"{}")
    except ValueError:
        raise HTTPException(400, "Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(400, "Invalid JSON body")

    try:
        return await process_webhook(db, payload)
    except CalendlyPayloadError as e:
        await db.rollback()
        raise HTTPException(400, str(e))
    except Exception as e:
        logger.exception("[calendly] webhook failed")
        await db.rollback()
        return JSONResponse(status_code=500, content={"error": str(e) or "Internal server error"})
