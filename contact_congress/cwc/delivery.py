"""
Recipient delivery over CWC: build the message, send it, record the outcome.
"""

from __future__ import annotations

import logging
from typing import Optional

from contact_congress.cwc.client import CwcClient
from contact_congress.cwc.message import DeliveryAgent, build_message
from contact_congress.tracker.directory import RecipientDescriptor
from contact_congress.tracker.tracker import FillOutcome, TrackerDB


logger = logging.getLogger(__name__)


class CwcDelivery:
    """
    Send messages to CWC-enabled offices and keep the tracker up to date.

    Usage:
        cwc = CwcDelivery(client, agent, db)
        outcome = cwc.message_via_cwc(recipient, fields, campaign_tag="rights")
    """

    def __init__(self, client: CwcClient, agent: DeliveryAgent, db: TrackerDB) -> None:
        self.client = client
        self.agent = agent
        self.db = db

    def office_supported(self, office_code: str) -> bool:
        return self.client.office_supported(office_code)

    def message_via_cwc(
        self,
        recipient: RecipientDescriptor,
        fields: dict[str, str],
        campaign_tag: Optional[str] = None,
        organization: Optional[str] = None,
    ) -> FillOutcome:
        """Deliver ``fields`` to ``recipient`` and store one FillStatus for it."""
        if not recipient.supports_cwc:
            raise ValueError(f"{recipient.bioguide_id} has no CWC office code")

        message = build_message(
            fields,
            office_code=recipient.cwc_office_code,
            agent=self.agent,
            campaign_tag=campaign_tag,
            organization=organization,
        )
        result = self.client.deliver(message)

        if result.success:
            outcome = FillOutcome.success()
        else:
            outcome = FillOutcome.error(result.error or "CWC delivery failed")

        self.db.record_fill(
            recipient.bioguide_id,
            outcome,
            campaign_tag=campaign_tag,
            delivery_path="cwc",
        )
        return outcome
