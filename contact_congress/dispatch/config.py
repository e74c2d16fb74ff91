"""
Dispatch configuration model.

Defines the deployment settings: database location, job queue, worker
count, and the CWC delivery agent. Supports loading from a JSON config file
with the CWC API key sourced from an environment variable.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from contact_congress.cwc.client import CWC_TEST_HOST, CwcConfig
from contact_congress.cwc.message import DeliveryAgent
from contact_congress.errors import ConfigError
from contact_congress.tracker.tracker import DEFAULT_QUEUE


AGENT_KEYS = (
    "delivery_agent",
    "delivery_agent_ack_email",
    "delivery_agent_contact_name",
    "delivery_agent_contact_email",
    "delivery_agent_contact_phone",
)


@dataclass
class CwcSettings:
    """CWC endpoint and delivery agent identification.

    Attributes:
        api_key: CWC API key (loaded from an env var at runtime).
        host: Base URL of the CWC endpoint.
        delivery_agent: Name of the delivering organization.
        delivery_agent_ack_email: Where CWC sends delivery acknowledgements.
        delivery_agent_contact_name: Technical contact at the delivery agent.
        delivery_agent_contact_email: Technical contact email.
        delivery_agent_contact_phone: Technical contact phone.
        timeout: Per-request timeout in seconds.
        supported_offices: If non-empty, only these office codes are sent
                           through CWC; everyone else gets a form fill.
    """

    api_key: str
    delivery_agent: str
    delivery_agent_ack_email: str
    delivery_agent_contact_name: str
    delivery_agent_contact_email: str
    delivery_agent_contact_phone: str
    host: str = CWC_TEST_HOST
    timeout: float = 30.0
    supported_offices: list[str] = field(default_factory=list)

    def agent(self) -> DeliveryAgent:
        return DeliveryAgent(
            name=self.delivery_agent,
            ack_email=self.delivery_agent_ack_email,
            contact_name=self.delivery_agent_contact_name,
            contact_email=self.delivery_agent_contact_email,
            contact_phone=self.delivery_agent_contact_phone,
        )

    def client_config(self) -> CwcConfig:
        return CwcConfig(api_key=self.api_key, host=self.host, timeout=self.timeout)


@dataclass
class Settings:
    """Global settings for intake and batch runs.

    Attributes:
        db_url: SQLAlchemy database URL for the tracker.
        queue: Job queue consumed by batch runs.
        max_workers: Worker threads per batch run; 1 runs jobs inline.
        form_timeout: Per-request timeout for web form submissions.
        cwc: CWC settings, or None when CWC delivery is not configured.
    """

    db_url: str = "sqlite:///contact_congress.db"
    queue: str = DEFAULT_QUEUE
    max_workers: int = 1
    form_timeout: float = 30.0
    cwc: Optional[CwcSettings] = None

    @property
    def cwc_enabled(self) -> bool:
        return self.cwc is not None and bool(self.cwc.api_key)


def load_settings(config_path: str | Path) -> Settings:
    """Load Settings from a JSON file.

    The CWC API key is read from the environment variable named in the
    ``cwc.api_key_env`` field. If that variable is not set, the CWC section
    is still loaded but ``Settings.cwc_enabled`` is False.

    Args:
        config_path: Path to the settings JSON file.

    Returns:
        A fully populated Settings instance.

    Raises:
        FileNotFoundError: If config_path does not exist.
        ConfigError: If the file is not valid JSON or a CWC agent field is missing.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw: dict[str, Any] = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e

    # --- CWC section ---
    cwc: Optional[CwcSettings] = None
    cwc_raw = raw.get("cwc")
    if cwc_raw:
        missing = [key for key in AGENT_KEYS if not cwc_raw.get(key)]
        if missing:
            raise ConfigError(f"CWC settings missing: {', '.join(missing)}")
        api_key_env = cwc_raw.get("api_key_env", "CWC_API_KEY")
        cwc = CwcSettings(
            api_key=os.environ.get(api_key_env, ""),
            host=cwc_raw.get("host", CWC_TEST_HOST),
            timeout=float(cwc_raw.get("timeout", 30.0)),
            supported_offices=list(cwc_raw.get("supported_offices", [])),
            **{key: cwc_raw[key] for key in AGENT_KEYS},
        )

    # --- Build settings ---
    try:
        max_workers = int(raw.get("max_workers", 1))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"max_workers must be an integer: {e}") from e
    if max_workers < 1:
        raise ConfigError("max_workers must be at least 1")

    return Settings(
        db_url=raw.get("db_url", "sqlite:///contact_congress.db"),
        queue=raw.get("queue", DEFAULT_QUEUE),
        max_workers=max_workers,
        form_timeout=float(raw.get("form_timeout", 30.0)),
        cwc=cwc,
    )
