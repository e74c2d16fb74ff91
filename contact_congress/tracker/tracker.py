"""
SQLAlchemy models and CRUD operations for recipients, fill jobs, and outcomes.

Every delivery attempt, by CWC or by web form, leaves one FillStatus row.
Pending work is stored as FillJob rows that are deleted once they succeed.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


DEFAULT_QUEUE = "error_or_failure"


class Base(DeclarativeBase):
    pass


class FillResult(enum.Enum):
    """Outcome of a single delivery attempt."""

    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class FillOutcome:
    """Result of attempting one fill, independent of the delivery path."""

    status: FillResult
    message: str = ""

    def __post_init__(self) -> None:
        if self.status is FillResult.ERROR and not self.message:
            raise ValueError("An error outcome requires a message")

    @classmethod
    def success(cls, message: str = "") -> FillOutcome:
        return cls(FillResult.SUCCESS, message)

    @classmethod
    def error(cls, message: str) -> FillOutcome:
        return cls(FillResult.ERROR, message)

    @property
    def ok(self) -> bool:
        return self.status is FillResult.SUCCESS

    def to_dict(self) -> dict[str, str]:
        data = {"status": self.status.value}
        if self.message:
            data["message"] = self.message
        return data


class Recipient(Base):
    """A legislative office that can receive constituent messages."""

    __tablename__ = "recipients"

    bioguide_id = Column(String(16), primary_key=True)
    name = Column(String(256), nullable=False, default="")
    cwc_office_code = Column(String(16), nullable=True, unique=True, index=True)
    # --- web form ---
    form_url = Column(String(1024), nullable=True)
    form_steps = Column(JSON, nullable=False, default=list)
    success_text = Column(String(512), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Recipient(bioguide_id='{self.bioguide_id}', "
            f"cwc_office_code={self.cwc_office_code!r})>"
        )


class FillJob(Base):
    """A pending submission attempt waiting for the next batch run."""

    __tablename__ = "fill_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipient_id = Column(
        String(16), ForeignKey("recipients.bioguide_id"), nullable=False, index=True
    )
    fields = Column(JSON, nullable=False)
    campaign_tag = Column(String(256), nullable=True)
    organization = Column(String(256), nullable=True)
    queue = Column(String(64), nullable=False, default=DEFAULT_QUEUE, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<FillJob(id={self.id}, recipient_id='{self.recipient_id}', "
            f"queue='{self.queue}')>"
        )


class FillStatus(Base):
    """The persisted record of one delivery attempt."""

    __tablename__ = "fill_statuses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipient_id = Column(String(16), nullable=False, index=True)
    status = Column(Enum(FillResult), nullable=False, index=True)
    message = Column(Text, nullable=True)
    campaign_tag = Column(String(256), nullable=True)
    delivery_path = Column(String(16), nullable=False, default="form")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<FillStatus(id={self.id}, recipient_id='{self.recipient_id}', "
            f"status={self.status.value}, path='{self.delivery_path}')>"
        )


class CampaignTag(Base):
    """A campaign label, created the first time it is delivered successfully."""

    __tablename__ = "campaign_tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(256), nullable=False, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<CampaignTag(id={self.id}, name='{self.name}')>"


class TrackerDB:
    """
    CRUD interface for recipients, fill jobs, fill statuses, and campaign tags.

    Usage:
        db = TrackerDB("sqlite:///contact_congress.db")
        db.add_recipient("A000000", cwc_office_code="HCA01")
        job = db.enqueue_fill("A000000", {"$NAME_FIRST": "Ada"}, campaign_tag="rights")
        db.record_fill("A000000", FillOutcome.success(), campaign_tag="rights")
        db.delete_job(job.id)
    """

    def __init__(self, db_url: str = "sqlite:///contact_congress.db") -> None:
        self.engine = create_engine(db_url, echo=False)
        Base.metadata.create_all(self.engine)
        self.SessionFactory = sessionmaker(bind=self.engine)

    def _session(self) -> Session:
        return self.SessionFactory()

    # ---- Recipients ----

    def add_recipient(
        self,
        bioguide_id: str,
        name: str = "",
        cwc_office_code: Optional[str] = None,
        form_url: Optional[str] = None,
        form_steps: Optional[list[dict[str, Any]]] = None,
        success_text: Optional[str] = None,
    ) -> Recipient:
        with self._session() as session:
            recipient = Recipient(
                bioguide_id=bioguide_id,
                name=name,
                cwc_office_code=cwc_office_code or None,
                form_url=form_url,
                form_steps=list(form_steps or []),
                success_text=success_text,
            )
            session.add(recipient)
            session.commit()
            session.refresh(recipient)
            return recipient

    def get_recipient(self, bioguide_id: str) -> Optional[Recipient]:
        with self._session() as session:
            return session.get(Recipient, bioguide_id)

    def get_recipient_by_office_code(self, office_code: str) -> Optional[Recipient]:
        with self._session() as session:
            return (
                session.query(Recipient)
                .filter(Recipient.cwc_office_code == office_code)
                .first()
            )

    def list_recipients(self) -> list[Recipient]:
        with self._session() as session:
            return session.query(Recipient).order_by(Recipient.bioguide_id).all()

    # ---- Jobs ----

    def enqueue_fill(
        self,
        recipient_id: str,
        fields: dict[str, str],
        campaign_tag: Optional[str] = None,
        queue: str = DEFAULT_QUEUE,
        organization: Optional[str] = None,
    ) -> FillJob:
        """Persist a fill for a later batch run instead of running it inline."""
        with self._session() as session:
            job = FillJob(
                recipient_id=recipient_id,
                fields=dict(fields),
                campaign_tag=campaign_tag or None,
                organization=organization or None,
                queue=queue,
            )
            session.add(job)
            session.commit()
            session.refresh(job)
            return job

    def get_job(self, job_id: int) -> Optional[FillJob]:
        with self._session() as session:
            return session.get(FillJob, job_id)

    def list_jobs(
        self,
        queue: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[FillJob]:
        with self._session() as session:
            q = session.query(FillJob)
            if queue:
                q = q.filter(FillJob.queue == queue)
            q = q.order_by(FillJob.id)
            if limit:
                q = q.limit(limit)
            return q.all()

    def delete_job(self, job_id: int) -> bool:
        with self._session() as session:
            job = session.get(FillJob, job_id)
            if job is None:
                return False
            session.delete(job)
            session.commit()
            return True

    # ---- Outcomes ----

    def record_fill(
        self,
        recipient_id: str,
        outcome: FillOutcome,
        campaign_tag: Optional[str] = None,
        delivery_path: str = "form",
    ) -> FillStatus:
        """Store the outcome of one attempt.

        A successful attempt carrying a campaign tag also makes sure the
        matching CampaignTag exists.
        """
        with self._session() as session:
            status = FillStatus(
                recipient_id=recipient_id,
                status=outcome.status,
                message=outcome.message or None,
                campaign_tag=campaign_tag or None,
                delivery_path=delivery_path,
            )
            session.add(status)
            session.commit()
            session.refresh(status)

        if outcome.ok and campaign_tag:
            self.ensure_campaign_tag(campaign_tag)
        return status

    def list_fill_statuses(
        self,
        status: Optional[FillResult] = None,
        recipient_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[FillStatus]:
        with self._session() as session:
            q = session.query(FillStatus)
            if status:
                q = q.filter(FillStatus.status == status)
            if recipient_id:
                q = q.filter(FillStatus.recipient_id == recipient_id)
            return q.order_by(FillStatus.id.desc()).limit(limit).all()

    def count_fill_statuses(self, status: Optional[FillResult] = None) -> int:
        with self._session() as session:
            q = session.query(FillStatus)
            if status:
                q = q.filter(FillStatus.status == status)
            return q.count()

    # ---- Campaign tags ----

    def ensure_campaign_tag(self, name: str) -> CampaignTag:
        """Return the CampaignTag called ``name``, creating it if needed."""
        existing = self.get_campaign_tag(name)
        if existing is not None:
            return existing
        with self._session() as session:
            tag = CampaignTag(name=name)
            session.add(tag)
            try:
                session.commit()
            except IntegrityError:
                # Another worker created it first.
                session.rollback()
                return self.get_campaign_tag(name)
            session.refresh(tag)
            return tag

    def get_campaign_tag(self, name: str) -> Optional[CampaignTag]:
        with self._session() as session:
            return session.query(CampaignTag).filter(CampaignTag.name == name).first()

    def list_campaign_tags(self) -> list[CampaignTag]:
        with self._session() as session:
            return session.query(CampaignTag).order_by(CampaignTag.id).all()

    # ---- Stats ----

    def get_stats(self) -> dict[str, Any]:
        with self._session() as session:
            by_status: dict[str, int] = {}
            for st in FillResult:
                count = session.query(FillStatus).filter(FillStatus.status == st).count()
                if count > 0:
                    by_status[st.value] = count
            return {
                "pending_jobs": session.query(FillJob).count(),
                "recipients": session.query(Recipient).count(),
                "campaign_tags": session.query(CampaignTag).count(),
                "by_status": by_status,
            }
