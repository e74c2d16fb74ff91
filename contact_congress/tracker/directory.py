"""
Recipient directory — resolves recipient identifiers to cached descriptors.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from contact_congress.errors import RecipientNotFound
from contact_congress.tracker.tracker import Recipient, TrackerDB


logger = logging.getLogger(__name__)

CAPTCHA_STEP = "captcha"


@dataclass(frozen=True)
class RecipientDescriptor:
    """Read-only view of a recipient and how it can be reached."""

    bioguide_id: str
    name: str = ""
    cwc_office_code: Optional[str] = None
    form_url: Optional[str] = None
    form_steps: tuple[dict[str, Any], ...] = field(default_factory=tuple)
    success_text: Optional[str] = None

    @property
    def supports_cwc(self) -> bool:
        return bool(self.cwc_office_code)

    @property
    def requires_captcha(self) -> bool:
        return any(step.get("action") == CAPTCHA_STEP for step in self.form_steps)

    @classmethod
    def from_record(cls, record: Recipient) -> RecipientDescriptor:
        return cls(
            bioguide_id=record.bioguide_id,
            name=record.name or "",
            cwc_office_code=record.cwc_office_code or None,
            form_url=record.form_url,
            form_steps=tuple(dict(step) for step in (record.form_steps or [])),
            success_text=record.success_text,
        )


class RecipientDirectory:
    """
    Cached lookup of recipients stored in the tracker database.

    Usage:
        directory = RecipientDirectory(db)
        recipient = directory.retrieve("A000000")
        if recipient.supports_cwc:
            ...
    """

    def __init__(self, db: TrackerDB) -> None:
        self.db = db
        self._cache: dict[str, RecipientDescriptor] = {}
        self._lock = threading.Lock()

    def retrieve(self, recipient_id: str) -> RecipientDescriptor:
        """Return the descriptor for ``recipient_id``.

        Raises:
            RecipientNotFound: If no recipient has that identifier.
        """
        key = str(recipient_id)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        record = self.db.get_recipient(key)
        if record is None:
            raise RecipientNotFound(key)
        descriptor = RecipientDescriptor.from_record(record)
        with self._lock:
            return self._cache.setdefault(key, descriptor)

    def retrieve_by_office_code(self, office_code: str) -> RecipientDescriptor:
        """Return the recipient whose CWC office code is ``office_code``."""
        record = self.db.get_recipient_by_office_code(office_code)
        if record is None:
            raise RecipientNotFound(office_code)
        return self.retrieve(record.bioguide_id)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
        logger.debug("Recipient cache cleared")
