"""Delivery collaborators: message formatting and chat sinks."""

from news_relay.delivery.formatting import SlackMessageFormatter
from news_relay.delivery.slack import DeliveryResult, Notifier, SlackWebhookNotifier

__all__ = [
    "DeliveryResult",
    "Notifier",
    "SlackMessageFormatter",
    "SlackWebhookNotifier",
]
