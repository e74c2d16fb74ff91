"""
Persistence for recipients, fill jobs, fill outcomes, and campaign tags.
"""

from contact_congress.tracker.tracker import (
    DEFAULT_QUEUE,
    Base,
    CampaignTag,
    FillJob,
    FillOutcome,
    FillResult,
    FillStatus,
    Recipient,
    TrackerDB,
)
from contact_congress.tracker.directory import RecipientDescriptor, RecipientDirectory

__all__ = [
    "DEFAULT_QUEUE",
    "Base",
    "CampaignTag",
    "FillJob",
    "FillOutcome",
    "FillResult",
    "FillStatus",
    "Recipient",
    "TrackerDB",
    "RecipientDescriptor",
    "RecipientDirectory",
]
