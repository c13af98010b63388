"""
ProofMark — Audit webhook notifications
"""

import logging
import os
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


async def send_event_notification(event: dict, client: Optional[httpx.AsyncClient] = None) -> None:
    """POST a decoded registry event as JSON to AUDIT_WEBHOOK_URL, if one is configured."""
    url = os.getenv("AUDIT_WEBHOOK_URL", "")
    if not url:
        logger.debug("Webhook skipped: AUDIT_WEBHOOK_URL not set")
        return
    headers = {"Content-Type": "application/json"}
    token = os.getenv("AUDIT_WEBHOOK_TOKEN", "")
    if token:
        headers["Authorization"] = f"Bearer {token}"
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=10.0) as own_client:
                resp = await own_client.post(url, headers=headers, json=event)
        else:
            resp = await client.post(url, headers=headers, json=event)
        if resp.status_code >= 400:
            logger.warning(f"Audit webhook error {resp.status_code}: {resp.text[:200]}")
        else:
            logger.info(f"Audit webhook delivered {event['event']}")
    except Exception as e:
        logger.warning(f"Failed to deliver audit webhook for {event['event']}: {e}")
