"""Outbound notifications."""

from .webhooks import RetryPolicy, WebhookManager, WebhookEvent, WebhookConfig, WebhookDelivery

__all__ = ["RetryPolicy", "WebhookManager", "WebhookEvent", "WebhookConfig", "WebhookDelivery"]
