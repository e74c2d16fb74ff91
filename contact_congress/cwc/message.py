"""
CWC message construction.

Maps submitted form fields onto a Congressional Web Contact 2.0 message
and renders it as XML through a Jinja2 template. A message carries exactly
one body element: ``<ConstituentMessage>`` for an individual constituent,
or ``<OrganizationStatement>`` when sent on behalf of an organization.
"""

from __future__ import annotations

import enum
import secrets
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from jinja2 import BaseLoader, Environment


CWC_VERSION = "2.0"

CWC_TEMPLATE = """\
<?xml version="1.0" encoding="UTF-8"?>
<CWC>
  <CWCVersion>{{ version }}</CWCVersion>
  <Delivery>
    <DeliveryId>{{ msg.delivery_id }}</DeliveryId>
    <DeliveryDate>{{ msg.delivery_date.strftime('%Y%m%d') }}</DeliveryDate>
    <DeliveryAgent>
      <DeliveryAgentName>{{ agent.name }}</DeliveryAgentName>
      <DeliveryAgentAckEmailAddress>{{ agent.ack_email }}</DeliveryAgentAckEmailAddress>
      <DeliveryAgentContact>
        <DeliveryAgentContactName>{{ agent.contact_name }}</DeliveryAgentContactName>
        <DeliveryAgentContactEmail>{{ agent.contact_email }}</DeliveryAgentContactEmail>
        <DeliveryAgentContactPhone>{{ agent.contact_phone }}</DeliveryAgentContactPhone>
      </DeliveryAgentContact>
    </DeliveryAgent>
{% if msg.organization %}
    <Organization>{{ msg.organization }}</Organization>
{% endif %}
    <CampaignId>{{ msg.campaign_id }}</CampaignId>
  </Delivery>
  <Recipient>
    <MemberOffice>{{ msg.office_code }}</MemberOffice>
    <IsResponseRequested>{{ 'Y' if msg.response_requested else 'N' }}</IsResponseRequested>
    <NewsletterOptIn>N</NewsletterOptIn>
  </Recipient>
  <Constituent>
{% for tag, value in constituent %}
    <{{ tag }}>{{ value }}</{{ tag }}>
{% endfor %}
  </Constituent>
  <Message>
    <Subject>{{ msg.subject }}</Subject>
    <LibraryOfCongressTopics>
{% for topic in msg.topics %}
      <LibraryOfCongressTopic>{{ topic }}</LibraryOfCongressTopic>
{% endfor %}
    </LibraryOfCongressTopics>
{% if organization_statement %}
    <OrganizationStatement>{{ msg.body }}</OrganizationStatement>
{% else %}
    <ConstituentMessage>{{ msg.body }}</ConstituentMessage>
{% endif %}
  </Message>
</CWC>
"""

# Constituent elements in schema order: (tag, field key, required)
CONSTITUENT_FIELDS: list[tuple[str, str, bool]] = [
    ("Prefix", "$NAME_PREFIX", True),
    ("FirstName", "$NAME_FIRST", True),
    ("LastName", "$NAME_LAST", True),
    ("Address1", "$ADDRESS_STREET", True),
    ("Address2", "$ADDRESS_STREET_2", False),
    ("City", "$ADDRESS_CITY", True),
    ("StateAbbreviation", "$ADDRESS_STATE_POSTAL_ABBREV", True),
    ("Zip", "$ADDRESS_ZIP5", True),
    ("Phone", "$PHONE", False),
    ("Email", "$EMAIL", True),
]

_jinja_env = Environment(
    loader=BaseLoader(),
    autoescape=True,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)


class BodyVariant(enum.Enum):
    CONSTITUENT_MESSAGE = "ConstituentMessage"
    ORGANIZATION_STATEMENT = "OrganizationStatement"


@dataclass(frozen=True)
class DeliveryAgent:
    """Identifies the organization delivering messages. Fixed per deployment."""

    name: str
    ack_email: str
    contact_name: str
    contact_email: str
    contact_phone: str


@dataclass
class DeliveryMessage:
    """A CWC message ready to be serialized and delivered."""

    office_code: str
    agent: DeliveryAgent
    campaign_id: str
    fields: dict[str, str]
    organization: Optional[str] = None
    delivery_id: str = field(default_factory=lambda: secrets.token_hex(16))
    delivery_date: date = field(default_factory=date.today)
    response_requested: bool = False

    @property
    def body_variant(self) -> BodyVariant:
        if self.organization:
            return BodyVariant.ORGANIZATION_STATEMENT
        return BodyVariant.CONSTITUENT_MESSAGE

    @property
    def subject(self) -> str:
        return self.fields.get("$SUBJECT", "")

    @property
    def body(self) -> str:
        return self.fields.get("$MESSAGE", "")

    @property
    def topics(self) -> list[str]:
        topic = self.fields.get("$TOPIC")
        if not topic:
            return []
        if isinstance(topic, (list, tuple)):
            return [t for t in topic if t]
        return [topic]

    def constituent(self) -> list[tuple[str, str]]:
        """Constituent elements in schema order, skipping empty optional ones."""
        elements = []
        for tag, key, required in CONSTITUENT_FIELDS:
            value = self.fields.get(key, "") or ""
            if tag == "Zip" and self.fields.get("$ADDRESS_ZIP4"):
                value = f"{value}-{self.fields['$ADDRESS_ZIP4']}"
            if value or required:
                elements.append((tag, value))
        return elements

    def to_xml(self) -> str:
        template = _jinja_env.from_string(CWC_TEMPLATE)
        return template.render(
            version=CWC_VERSION,
            msg=self,
            agent=self.agent,
            constituent=self.constituent(),
            organization_statement=(
                self.body_variant is BodyVariant.ORGANIZATION_STATEMENT
            ),
        )


def build_message(
    fields: dict[str, str],
    office_code: str,
    agent: DeliveryAgent,
    campaign_tag: Optional[str] = None,
    organization: Optional[str] = None,
) -> DeliveryMessage:
    """
    Build a CWC message for one recipient office.

    Args:
        fields: Submitted field values, already merged with any overrides.
        office_code: The recipient's CWC member office code (e.g. "HCA01").
        agent: Delivery agent identification for this deployment.
        campaign_tag: Used as the CWC campaign id; a random id when absent.
        organization: Organization name. A non-empty value makes the message
            an organization statement instead of a constituent message.

    Returns:
        A DeliveryMessage. Building has no side effects.
    """
    return DeliveryMessage(
        office_code=office_code,
        agent=agent,
        campaign_id=campaign_tag or secrets.token_hex(16),
        fields=dict(fields),
        organization=(organization or "").strip() or None,
    )
