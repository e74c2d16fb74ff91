"""
Congressional Web Contact (CWC) message building and delivery.
"""

from contact_congress.cwc.message import (
    BodyVariant,
    DeliveryAgent,
    DeliveryMessage,
    build_message,
)
from contact_congress.cwc.client import CwcClient, CwcConfig, DeliveryResult
from contact_congress.cwc.delivery import CwcDelivery

__all__ = [
    "BodyVariant",
    "DeliveryAgent",
    "DeliveryMessage",
    "build_message",
    "CwcClient",
    "CwcConfig",
    "DeliveryResult",
    "CwcDelivery",
]
