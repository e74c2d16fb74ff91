"""
Client for the Congressional Web Contact (CWC) delivery API.

Messages are POSTed as XML to ``{host}/v2/message`` with the API key as a
query parameter. The client never retries: a failed delivery is reported
back to the caller, and the fill job that produced it stays queued.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from contact_congress.cwc.message import DeliveryMessage
from contact_congress.errors import CwcBadRequest


logger = logging.getLogger(__name__)

CWC_TEST_HOST = "https://test-cwc.house.gov"


@dataclass
class CwcConfig:
    """Configuration for CWC API access."""

    api_key: str
    host: str = CWC_TEST_HOST
    timeout: float = 30.0


@dataclass
class DeliveryResult:
    """What happened when a message was sent to the CWC endpoint."""

    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    errors: list[str] = field(default_factory=list)


class CwcClient:
    """
    Deliver CWC messages over HTTP.

    Usage:
        client = CwcClient(CwcConfig(api_key="...", host="https://cwc.house.gov"))
        result = client.deliver(message)
        if not result.success:
            print(result.error)
    """

    def __init__(
        self,
        config: CwcConfig,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.config = config
        self._client = httpx.Client(
            base_url=config.host.rstrip("/"),
            headers={"Content-Type": "application/xml"},
            timeout=config.timeout,
            transport=transport,
        )
        self._office_codes: Optional[list[str]] = None

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    # ---- Delivery ----

    def deliver(self, message: DeliveryMessage) -> DeliveryResult:
        """Send a message. Transport errors and non-2xx replies become failures."""
        try:
            resp = self._post_xml("/v2/message", message)
        except httpx.HTTPError as e:
            logger.warning("CWC delivery to %s failed: %s", message.office_code, e)
            return DeliveryResult(success=False, error=f"CWC transport error: {e}")

        if resp.is_success:
            logger.info(
                "Delivered CWC message %s to %s", message.delivery_id, message.office_code
            )
            return DeliveryResult(success=True, status_code=resp.status_code)

        errors = _parse_errors(resp.text)
        detail = "; ".join(errors) if errors else resp.reason_phrase
        logger.warning(
            "CWC rejected message to %s (HTTP %d): %s",
            message.office_code, resp.status_code, detail,
        )
        return DeliveryResult(
            success=False,
            status_code=resp.status_code,
            error=f"CWC returned HTTP {resp.status_code}: {detail}",
            errors=errors,
        )

    def validate(self, message: DeliveryMessage) -> None:
        """
        Check a message against the CWC schema without delivering it.

        Raises:
            CwcBadRequest: If the endpoint rejects the message.
            httpx.HTTPError: On transport failure.
        """
        resp = self._post_xml("/v2/validate", message)
        if not resp.is_success:
            errors = _parse_errors(resp.text)
            raise CwcBadRequest(
                f"CWC validation failed (HTTP {resp.status_code})",
                status_code=resp.status_code,
                errors=errors,
            )

    # ---- Offices ----

    def office_codes(self) -> list[str]:
        """Return the member office codes currently accepting CWC messages."""
        if self._office_codes is None:
            resp = self._client.get("/v2/offices", params={"apikey": self.config.api_key})
            resp.raise_for_status()
            data: Any = resp.json()
            self._office_codes = [str(code) for code in data]
        return self._office_codes

    def office_supported(self, office_code: str) -> bool:
        """
        True if ``office_code`` is on the endpoint's office list.

        When the list cannot be fetched every office is treated as supported,
        and a failed delivery is reported by ``deliver`` as usual.
        """
        try:
            return office_code in self.office_codes()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Could not fetch CWC office list, assuming %s is supported: %s",
                           office_code, e)
            return True

    # ---- Utility ----

    def _post_xml(self, path: str, message: DeliveryMessage) -> httpx.Response:
        return self._client.post(
            path,
            params={"apikey": self.config.api_key},
            content=message.to_xml().encode("utf-8"),
        )


def _parse_errors(body: str) -> list[str]:
    """Pull ``<Error>`` texts out of a CWC error response."""
    if not body:
        return []
    try:
        root = ET.fromstring(body)
    except ET.ParseError:
        return [body.strip()[:500]]
    return [el.text.strip() for el in root.iter("Error") if el.text and el.text.strip()]
