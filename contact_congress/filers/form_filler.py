"""
Form filler — deliver a message by filling out a recipient's web contact form.

A recipient's form is described by an ordered list of steps stored with the
recipient record, for example::

    [
        {"action": "visit"},
        {"action": "fill_in", "name": "first_name", "value": "$NAME_FIRST"},
        {"action": "select", "name": "state", "value": "$ADDRESS_STATE_POSTAL_ABBREV"},
        {"action": "check", "name": "newsletter", "value": "no", "required": false},
        {"action": "captcha", "name": "captcha_answer"},
        {"action": "submit", "url": "/contact/send"},
    ]

Values starting with ``$`` are placeholders looked up in the submitted
fields. The filler records one FillStatus per attempt, whatever the result.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional
from urllib.parse import urljoin

import httpx

from contact_congress.errors import DeliveryFailure, FormFillError
from contact_congress.tracker.directory import RecipientDescriptor
from contact_congress.tracker.tracker import DEFAULT_QUEUE, FillJob, FillOutcome, TrackerDB


logger = logging.getLogger(__name__)

# Given the recipient and the captcha step, return the answer to submit.
CaptchaSolver = Callable[[RecipientDescriptor, dict[str, Any]], str]
FillCallback = Callable[[FillOutcome], Any]


def notify(callback: Optional[FillCallback], outcome: FillOutcome, recipient_id: str) -> None:
    """Hand ``outcome`` to ``callback``. A callback that raises is logged, never propagated."""
    if callback is None:
        return
    try:
        callback(outcome)
    except Exception:
        logger.exception("Fill callback raised for %s", recipient_id)


class FormDriver(ABC):
    """Something that can submit a set of fields to a recipient's form."""

    @abstractmethod
    def submit(self, recipient: RecipientDescriptor, fields: dict[str, str]) -> None:
        """Submit the form, raising FormFillError if it did not go through."""
        ...


class HttpFormDriver(FormDriver):
    """
    Submit plain HTML forms with HTTP requests, following the recipient's steps.

    Forms that depend on JavaScript need a browser-backed FormDriver instead.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        captcha_solver: Optional[CaptchaSolver] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.timeout = timeout
        self.captcha_solver = captcha_solver
        self._transport = transport

    def submit(self, recipient: RecipientDescriptor, fields: dict[str, str]) -> None:
        if not recipient.form_url:
            raise FormFillError(f"{recipient.bioguide_id} has no contact form URL")

        data: dict[str, str] = {}
        submit_url = recipient.form_url
        visits: list[str] = []

        for step in recipient.form_steps:
            action = step.get("action")
            if action in ("fill_in", "select", "check", "captcha") and not step.get("name"):
                raise FormFillError(f"Form step {action!r} has no field name")
            if action == "visit":
                visits.append(urljoin(recipient.form_url, step.get("url", "")))
            elif action in ("fill_in", "select", "check"):
                value = self._resolve(step, fields)
                if value is not None:
                    data[step["name"]] = value
            elif action == "captcha":
                if self.captcha_solver is None:
                    raise FormFillError(
                        f"{recipient.bioguide_id} requires a captcha and no solver is configured"
                    )
                data[step["name"]] = self.captcha_solver(recipient, step)
            elif action == "submit":
                submit_url = urljoin(recipient.form_url, step.get("url", ""))
            else:
                raise FormFillError(f"Unsupported form step {action!r}")

        try:
            with httpx.Client(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                for url in visits:
                    client.get(url).raise_for_status()
                resp = client.post(submit_url, data=data)
        except httpx.HTTPError as e:
            raise FormFillError(f"Form request failed: {e}") from e

        if not resp.is_success:
            raise FormFillError(f"Form POST returned HTTP {resp.status_code}")
        if recipient.success_text and recipient.success_text not in resp.text:
            raise FormFillError("Success text not found in form response")

    @staticmethod
    def _resolve(step: dict[str, Any], fields: dict[str, str]) -> Optional[str]:
        value = step.get("value", "on" if step.get("action") == "check" else "")
        if isinstance(value, str) and value.startswith("$"):
            if value not in fields or fields[value] in (None, ""):
                if step.get("required", True):
                    raise FormFillError(f"Missing required field {value}")
                return None
            value = fields[value]
        options = step.get("options")
        if options:
            value = options.get(value, value)
        return str(value)


class FormFiller:
    """
    Fill out one recipient's contact form and record the outcome.

    Usage:
        filler = FormFiller(recipient, fields, "rights", db)
        outcome = filler.fill_out_form()

        # or defer it to the next batch run
        job = FormFiller(recipient, fields, "rights", db).delay()
    """

    def __init__(
        self,
        recipient: RecipientDescriptor,
        fields: dict[str, str],
        campaign_tag: Optional[str],
        db: TrackerDB,
        driver: Optional[FormDriver] = None,
    ) -> None:
        self.recipient = recipient
        self.fields = dict(fields)
        self.campaign_tag = campaign_tag
        self.db = db
        self.driver = driver or HttpFormDriver()

    def fill_out_form(self, callback: Optional[FillCallback] = None) -> FillOutcome:
        """Submit the form, store a FillStatus, and hand the outcome to ``callback``."""
        try:
            self.driver.submit(self.recipient, self.fields)
            outcome = FillOutcome.success()
        except DeliveryFailure as e:
            logger.info("Form fill for %s failed: %s", self.recipient.bioguide_id, e)
            outcome = FillOutcome.error(str(e))
        except Exception as e:
            logger.exception("Form driver crashed for %s", self.recipient.bioguide_id)
            outcome = FillOutcome.error(f"{type(e).__name__}: {e}")

        self.db.record_fill(
            self.recipient.bioguide_id,
            outcome,
            campaign_tag=self.campaign_tag,
            delivery_path="form",
        )
        notify(callback, outcome, self.recipient.bioguide_id)
        return outcome

    def delay(self, queue: str = DEFAULT_QUEUE) -> FillJob:
        """Persist this fill as a FillJob to be run by a later batch."""
        return self.db.enqueue_fill(
            self.recipient.bioguide_id,
            self.fields,
            campaign_tag=self.campaign_tag,
            queue=queue,
        )
