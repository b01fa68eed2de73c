"""
Alert dispatch sinks.

The shift monitor only needs to know whether a dispatch attempt succeeded.
Sinks are passed in explicitly so tests can record payloads without a live
transport.

    WebSocketDispatchSink  push to /ws/alerts clients (default)
    WebhookDispatchSink    POST JSON to ALERT_WEBHOOK_URL via httpx
    CompositeDispatchSink  fan-out, succeeds if any member succeeds

dispatch_with_timeout() bounds every attempt; a timeout or exception is a
failed attempt, never an error for the scan.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

import httpx

from models import Shift
from services.duty_hours import round_hours
from services.thresholds import ThresholdPolicy
from shift_helpers import format_utc_iso

logger = logging.getLogger(__name__)


def build_alert_payload(shift: Shift, policy: ThresholdPolicy, duty_hours: float, now: datetime) -> dict:
    """JSON-ready alert message for one crossed threshold."""
    return {
        "type": "duty_alert",
        "shift_id": shift.id,
        "threshold": policy.hours,
        "alert_type": policy.alert_type,
        "train_number": shift.train_number,
        "train_name": shift.train_name,
        "locomotive_no": shift.locomotive_no,
        "section": shift.section,
        "duty_hours": round_hours(duty_hours),
        "sign_on_time": format_utc_iso(shift.sign_on_time),
        "loco_pilot": shift.loco_pilot.contact,
        "train_manager": shift.train_manager.contact,
        "message": policy.message,
        "requires_action": policy.requires_action,
        "valid_responses": policy.options_payload(),
        "timestamp": format_utc_iso(now),
    }


class DispatchSink(ABC):
    name = "sink"

    @abstractmethod
    async def dispatch(self, payload: dict) -> bool:
        """Attempt delivery. True on success, False on a retryable failure."""


class WebSocketDispatchSink(DispatchSink):
    name = "websocket"

    async def dispatch(self, payload: dict) -> bool:
        # Deferred to avoid importing FastAPI routing into the core at load time
        from routers.websocket import broadcast_duty_alert

        delivered = await broadcast_duty_alert(payload)
        if delivered == 0:
            logger.warning(
                f"{payload['alert_type']} alert for shift {payload['shift_id']} "
                f"broadcast with no connected clients"
            )
        return True


class WebhookDispatchSink(DispatchSink):
    name = "webhook"

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    async def dispatch(self, payload: dict) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
        except httpx.TimeoutException:
            logger.warning(f"Alert webhook timeout: {self.url}")
            return False
        except httpx.HTTPError as e:
            logger.error(f"Alert webhook error for '{self.url}': {e}")
            return False
        return True


class CompositeDispatchSink(DispatchSink):
    name = "composite"

    def __init__(self, sinks: Sequence[DispatchSink]):
        self.sinks: List[DispatchSink] = list(sinks)

    async def dispatch(self, payload: dict) -> bool:
        delivered = False
        for sink in self.sinks:
            try:
                if await sink.dispatch(payload):
                    delivered = True
            except Exception as e:
                logger.warning(f"Dispatch via {sink.name} failed: {e}")
        return delivered


async def dispatch_with_timeout(sink: DispatchSink, payload: dict, timeout: float) -> bool:
    try:
        return bool(await asyncio.wait_for(sink.dispatch(payload), timeout=timeout))
    except asyncio.TimeoutError:
        logger.warning(
            f"Dispatch of {payload.get('alert_type')} for shift {payload.get('shift_id')} "
            f"timed out after {timeout}s"
        )
        return False
    except Exception as e:
        logger.error(
            f"Dispatch of {payload.get('alert_type')} for shift {payload.get('shift_id')} failed: {e}",
            exc_info=True,
        )
        return False


def build_default_sink(webhook_url: Optional[str] = None, timeout: float = 10.0) -> DispatchSink:
    websocket_sink = WebSocketDispatchSink()
    if not webhook_url:
        return websocket_sink
    return CompositeDispatchSink([websocket_sink, WebhookDispatchSink(webhook_url, timeout=timeout)])
