"""Webhook delivery of captured images."""

from dashsnap.delivery.webhook import DeliveryOutcome, deliver

__all__ = ["DeliveryOutcome", "deliver"]
