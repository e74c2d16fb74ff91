"""
Submission intake — accept a message for one office and try to deliver it.

This is the layer an HTTP endpoint such as ``POST /cwc/<office_code>/messages``
calls into. It answers with a JSON-ready dict. Only an unknown office code or
a missing field set is reported as an error; a failed delivery is queued as a
fill job and retried by the next batch run.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from contact_congress.cwc.delivery import CwcDelivery
from contact_congress.errors import MissingFields, RecipientNotFound
from contact_congress.tracker.directory import RecipientDirectory
from contact_congress.tracker.tracker import DEFAULT_QUEUE, TrackerDB


logger = logging.getLogger(__name__)


def parse_fields(payload: Optional[dict[str, Any]]) -> dict[str, str]:
    """Return the payload's ``fields`` mapping, or raise MissingFields."""
    fields = (payload or {}).get("fields")
    if not isinstance(fields, dict) or not fields:
        raise MissingFields("Submission must include a non-empty 'fields' object")
    return {str(k): "" if v is None else str(v) for k, v in fields.items()}


def accept_submission(
    office_code: str,
    payload: Optional[dict[str, Any]],
    *,
    directory: RecipientDirectory,
    db: TrackerDB,
    cwc: Optional[CwcDelivery] = None,
    queue: str = DEFAULT_QUEUE,
) -> dict[str, str]:
    """
    Accept one submission addressed to a CWC office code.

    Args:
        office_code: The recipient's CWC member office code.
        payload: ``{"fields": {...}, "organization": str?, "campaign_tag": str?}``.
        directory: Resolves the office code to a recipient.
        db: Tracker used to queue the submission if delivery fails.
        cwc: CWC delivery. When None, every submission is queued.
        queue: Queue name for deferred submissions.

    Returns:
        ``{"status": "success"}`` or ``{"status": "error", "message": ...}``.
    """
    try:
        recipient = directory.retrieve_by_office_code(office_code)
        fields = parse_fields(payload)
    except (RecipientNotFound, MissingFields) as e:
        logger.info("Rejected submission for %s: %s", office_code, e)
        return {"status": "error", "message": str(e)}

    organization = payload.get("organization") or None
    campaign_tag = payload.get("campaign_tag") or None

    if cwc is not None:
        outcome = cwc.message_via_cwc(
            recipient,
            fields,
            campaign_tag=campaign_tag,
            organization=organization,
        )
        if outcome.ok:
            return {"status": "success"}
        logger.warning(
            "CWC delivery to %s failed, queueing for retry: %s",
            office_code, outcome.message,
        )

    job = db.enqueue_fill(
        recipient.bioguide_id,
        fields,
        campaign_tag=campaign_tag,
        queue=queue,
        organization=organization,
    )
    return {"status": "success", "message": f"Message queued for delivery (job #{job.id})"}
