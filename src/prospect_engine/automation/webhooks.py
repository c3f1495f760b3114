"""Webhook notifications for scoring, assignment and stage changes.

The engine hands over notifications only after it has released the
per-prospect lock, so a slow endpoint delays the caller but never blocks
other recomputes of the same prospect.
"""

import json
import hmac
import hashlib
import threading
import time
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple
from pathlib import Path
import urllib.request
import urllib.error

from ..storage.models import utcnow

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 500


class WebhookEvent(Enum):
    """Events that can trigger webhooks."""

    STAGE_CHANGED = "prospect.stage_changed"
    SCORED = "prospect.scored"
    ASSIGNED = "prospect.assigned"
    REPLY_NEEDS_REVIEW = "reply.needs_review"


@dataclass(frozen=True)
class RetryPolicy:
    """How hard to try a single delivery.

    Delays double from ``base_delay`` up to ``max_delay``. The worst case
    for one endpoint is ``attempts * timeout`` plus the sum of the delays.
    """

    attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0
    timeout: float = 10.0

    def delay(self, attempt: int) -> float:
        """Seconds to wait after a failed attempt (1-based)."""
        return min(self.max_delay, self.base_delay * 2 ** (attempt - 1))


@dataclass
class WebhookConfig:
    """A registered endpoint."""

    id: str
    url: str
    events: List[WebhookEvent]
    secret: Optional[str] = None  # For HMAC signature
    enabled: bool = True
    headers: Dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def wants(self, event: WebhookEvent) -> bool:
        return self.enabled and event in self.events

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "events": [e.value for e in self.events],
            "secret": self.secret,
            "enabled": self.enabled,
            "headers": self.headers,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WebhookConfig":
        hook = cls(
            id=data["id"],
            url=data["url"],
            events=[WebhookEvent(e) for e in data["events"]],
            secret=data.get("secret"),
            enabled=data.get("enabled", True),
            headers=data.get("headers", {}),
        )
        if data.get("created_at"):
            hook.created_at = datetime.fromisoformat(data["created_at"])
        return hook


@dataclass
class WebhookDelivery:
    """Outcome of sending one notification to one endpoint."""

    webhook_id: str
    event: WebhookEvent
    payload: Dict[str, Any]
    status_code: Optional[int] = None
    error: Optional[str] = None
    attempts: int = 0
    delivered_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def delivered(self) -> bool:
        return self.delivered_at is not None


def sign_payload(secret: str, body: str) -> str:
    """HMAC-SHA256 signature header value for a body."""
    digest = hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def build_body(event: WebhookEvent, payload: Dict[str, Any]) -> str:
    """JSON envelope posted to every subscriber of an event."""
    return json.dumps({
        "event": event.value,
        "data": payload,
        "sent_at": utcnow().isoformat(),
    }, default=str)


def is_retryable(status_code: Optional[int]) -> bool:
    """Connection errors, throttling and server errors are worth retrying."""
    if status_code is None:
        return True
    return status_code == 429 or status_code >= 500


class WebhookManager:
    """Registered endpoints plus a bounded log of recent deliveries."""

    def __init__(
        self,
        config_path: Optional[Path] = None,
        async_delivery: bool = True,
        retry: Optional[RetryPolicy] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ):
        if config_path is None:
            from ..core.config import settings
            config_path = settings.webhooks_path

        self.config_path = Path(config_path)
        self.async_delivery = async_delivery
        self.retry = retry or RetryPolicy()
        self.webhooks: Dict[str, WebhookConfig] = {}
        self.delivery_history: Deque[WebhookDelivery] = deque(maxlen=history_limit)
        self._history_lock = threading.Lock()
        self._load_config()

    def _load_config(self):
        if not self.config_path.exists():
            return
        try:
            with open(self.config_path, 'r') as f:
                data = json.load(f)
            for entry in data.get("webhooks", []):
                hook = WebhookConfig.from_dict(entry)
                self.webhooks[hook.id] = hook
        except (OSError, ValueError, KeyError) as e:
            logger.error(f"Error loading webhook config from {self.config_path}: {e}")

    def _save_config(self):
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w') as f:
            json.dump({"webhooks": [h.to_dict() for h in self.webhooks.values()]}, f, indent=2)

    def register(
        self,
        webhook_id: str,
        url: str,
        events: List[WebhookEvent],
        secret: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> WebhookConfig:
        """Register (or replace) an endpoint."""
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"Webhook URL must be http(s): {url}")
        if not events:
            raise ValueError("A webhook needs at least one event")
        webhook = WebhookConfig(
            id=webhook_id,
            url=url,
            events=list(events),
            secret=secret,
            headers=headers or {},
        )
        self.webhooks[webhook_id] = webhook
        self._save_config()
        logger.info(f"Registered webhook: {webhook_id} -> {url}")
        return webhook

    def unregister(self, webhook_id: str) -> bool:
        if self.webhooks.pop(webhook_id, None) is None:
            return False
        self._save_config()
        logger.info(f"Unregistered webhook: {webhook_id}")
        return True

    def list_webhooks(self) -> List[WebhookConfig]:
        return list(self.webhooks.values())

    def trigger(
        self,
        event: WebhookEvent,
        payload: Dict[str, Any],
        async_delivery: Optional[bool] = None,
    ) -> List[WebhookDelivery]:
        """Send an event to every enabled endpoint subscribed to it."""
        if async_delivery is None:
            async_delivery = self.async_delivery
        targets = [hook for hook in self.webhooks.values() if hook.wants(event)]
        if not targets:
            return []

        body = build_body(event, payload)
        deliveries = []
        for webhook in targets:
            delivery = WebhookDelivery(webhook_id=webhook.id, event=event, payload=payload)
            with self._history_lock:
                self.delivery_history.append(delivery)
            deliveries.append(delivery)

            if async_delivery:
                thread = threading.Thread(target=self._deliver, args=(webhook, delivery, body), daemon=True)
                thread.start()
            else:
                self._deliver(webhook, delivery, body)

        return deliveries

    def _post(self, webhook: WebhookConfig, event: WebhookEvent, body: str) -> Tuple[int, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "Prospect-Engine/1.0",
            "X-Webhook-Event": event.value,
            **webhook.headers,
        }
        if webhook.secret:
            headers["X-Webhook-Signature"] = sign_payload(webhook.secret, body)

        req = urllib.request.Request(webhook.url, data=body.encode(), headers=headers, method="POST")
        with urllib.request.urlopen(req, timeout=self.retry.timeout) as resp:
            return resp.status, resp.read().decode(errors="replace")[:200]

    def _deliver(self, webhook: WebhookConfig, delivery: WebhookDelivery, body: str):
        policy = self.retry
        for attempt in range(1, policy.attempts + 1):
            delivery.attempts = attempt
            try:
                delivery.status_code, _ = self._post(webhook, delivery.event, body)
            except urllib.error.HTTPError as e:
                delivery.status_code = e.code
                delivery.error = f"HTTP {e.code}"
            except (urllib.error.URLError, OSError) as e:
                delivery.status_code = None
                delivery.error = str(e)
            else:
                delivery.delivered_at = utcnow()
                delivery.error = None
                logger.info(f"Webhook delivered: {webhook.id} -> {delivery.event.value} ({delivery.status_code})")
                return

            logger.warning(f"Webhook {webhook.id} attempt {attempt}/{policy.attempts} failed: {delivery.error}")
            if not is_retryable(delivery.status_code) or attempt == policy.attempts:
                break
            time.sleep(policy.delay(attempt))

        logger.error(f"Webhook {webhook.id} gave up on {delivery.event.value} after {delivery.attempts} attempts")
