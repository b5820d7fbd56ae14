"""
Ops alerts for errors that need a human: unexpected 500s and records left
inconsistent by a failed rollback. Posts Discord-style embeds to a webhook.
"""
import httpx
import traceback
from datetime import datetime, timezone
from typing import Optional, Dict, Any
import logging
from app.config import settings

logger = logging.getLogger(__name__)

RED = 15158332
ORANGE = 15105570

FIELD_LIMIT = 1024


class WebhookErrorNotifier:
    """Send error alerts to a chat webhook"""

    def __init__(
        self,
        webhook_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.transport = transport

    def build_payload(
        self,
        error: Exception,
        request_info: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
        needs_reconciliation: bool = False
    ) -> Dict[str, Any]:
        error_type = type(error).__name__
        trace = ''.join(traceback.format_exception(type(error), error, error.__traceback__))

        fields = []
        if request_info:
            fields.append({
                "name": "Request",
                "value": "\n".join(f"**{k}:** {v}" for k, v in request_info.items() if v)[:FIELD_LIMIT],
                "inline": False
            })
        if details:
            fields.append({
                "name": "Records" if needs_reconciliation else "Details",
                "value": "\n".join(f"**{k}:** {v}" for k, v in details.items())[:FIELD_LIMIT],
                "inline": False
            })
        fields.append({
            "name": "Traceback",
            "value": f"```python\n{trace[-900:]}\n```",
            "inline": False
        })
        fields.append({"name": "Environment", "value": settings.app_env, "inline": True})

        title = f"Manual reconciliation needed: {error_type}" if needs_reconciliation else f"Error: {error_type}"
        return {
            "username": "DwellTime Error Monitor",
            "embeds": [{
                "title": title,
                "description": (str(error) or "No message")[:2000],
                "color": ORANGE if needs_reconciliation else RED,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "fields": fields
            }]
        }

    async def send_error(
        self,
        error: Exception,
        request_info: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
        needs_reconciliation: bool = False
    ) -> bool:
        """Post the alert. Never raises; a failed alert is only logged."""
        payload = self.build_payload(error, request_info, details, needs_reconciliation)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.webhook_url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to send error alert: {e}")
            return False

        logger.info(f"Error alert sent: {type(error).__name__}")
        return True


def get_error_notifier() -> Optional[WebhookErrorNotifier]:
    if not settings.error_webhook_url:
        return None
    return WebhookErrorNotifier(settings.error_webhook_url)
