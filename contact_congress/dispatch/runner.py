"""
Batch fill runner — drives a list of pending fill jobs to completion.

Jobs whose recipient needs a captcha run first, as their own group, and
every one of them finishes before the remaining jobs start. Each job is
routed to CWC when its recipient's office accepts CWC messages and to a
web form fill otherwise. Successful jobs are deleted; failed jobs stay in
the queue for the next run.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Union

from contact_congress.cwc.delivery import CwcDelivery
from contact_congress.dispatch.executors import InlineExecutor, JobExecutor
from contact_congress.errors import RecipientNotFound
from contact_congress.filers.form_filler import FillCallback, FormFiller, notify
from contact_congress.tracker.directory import RecipientDescriptor, RecipientDirectory
from contact_congress.tracker.tracker import FillJob, FillOutcome, TrackerDB


logger = logging.getLogger(__name__)

Preprocess = Callable[[Any], bool]
FormFillerFactory = Callable[[RecipientDescriptor, dict, Optional[str]], Any]

# delivery_path of a FillStatus for an attempt that failed before reaching CWC or a form
UNSTARTED_PATH = "unstarted"


class JobDisposition(enum.Enum):
    """What a batch run did with a job."""

    DELETED = "deleted"        # delivered, job removed
    RETAINED = "retained"      # delivery failed, job kept for retry
    HELD = "held"              # preprocess hook declined, job untouched
    FILTERED = "filtered"      # recipient did not match the regex
    UNRESOLVED = "unresolved"  # recipient unknown to the directory


@dataclass
class JobResult:
    """Result of processing a single job."""

    job_id: Optional[int]
    recipient_id: str
    disposition: JobDisposition
    requires_captcha: bool = False
    error: Optional[str] = None


@dataclass
class FillRunReport:
    """Summary report of a full batch run."""

    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    results: list[JobResult] = field(default_factory=list)

    def count(self, disposition: JobDisposition) -> int:
        return sum(1 for r in self.results if r.disposition is disposition)

    @property
    def deleted(self) -> int:
        return self.count(JobDisposition.DELETED)

    @property
    def retained(self) -> int:
        return self.count(JobDisposition.RETAINED)

    @property
    def skipped(self) -> int:
        return len(self.results) - self.deleted - self.retained

    def summary(self) -> str:
        """Format a human-readable run summary."""
        duration = ""
        if self.completed_at:
            elapsed = (self.completed_at - self.started_at).total_seconds()
            duration = f" in {elapsed:.1f}s"

        lines = [
            "=== Fill Run Report ===",
            f"Started:  {self.started_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        ]
        if self.completed_at:
            lines.append(
                f"Finished: {self.completed_at.strftime('%Y-%m-%d %H:%M:%S UTC')}{duration}"
            )
        lines.extend([
            f"Jobs:     {len(self.results)}",
            f"Deleted:  {self.deleted}",
            f"Retained: {self.retained}",
            f"Skipped:  {self.skipped}",
            "",
        ])

        for i, r in enumerate(self.results, 1):
            captcha = "captcha" if r.requires_captcha else ""
            job_id = f"#{r.job_id}" if r.job_id is not None else "-"
            lines.append(
                f"  [{i:3d}] {r.disposition.value:10s} | {job_id:>7s} | "
                f"{r.recipient_id[:12]:12s} | {captcha}"
            )
            if r.error:
                lines.append(f"         Error: {r.error}")

        lines.append("")
        lines.append("=== End Report ===")
        return "\n".join(lines)


def always_proceed(job: Any) -> bool:
    return True


class PerformFills:
    """
    Run a batch of pending fill jobs.

    Usage:
        jobs = db.list_jobs(queue="error_or_failure")
        task = PerformFills(
            jobs,
            db=db,
            directory=RecipientDirectory(db),
            cwc=CwcDelivery(client, agent, db),
            regex=r"^A",
            overrides={"$NAME_LAST": "Lovelace"},
        )
        report = task.execute()
        print(report.summary())
    """

    def __init__(
        self,
        jobs: Iterable[FillJob],
        *,
        db: TrackerDB,
        directory: RecipientDirectory,
        cwc: Optional[CwcDelivery] = None,
        regex: Union[str, re.Pattern, None] = None,
        overrides: Optional[dict[str, str]] = None,
        preprocess: Optional[Preprocess] = None,
        form_filler_factory: Optional[FormFillerFactory] = None,
        executor: Optional[JobExecutor] = None,
        cwc_offices: Optional[Iterable[str]] = None,
    ) -> None:
        self.jobs = list(jobs)
        self.db = db
        self.directory = directory
        self.cwc = cwc
        self.regex = re.compile(regex) if isinstance(regex, str) else regex
        self.overrides = dict(overrides or {})
        self.preprocess = preprocess or always_proceed
        self.form_filler_factory = form_filler_factory or self._default_form_filler
        self.executor = executor or InlineExecutor()
        self.cwc_offices = set(cwc_offices) if cwc_offices else None
        self.filtered_out: list[JobResult] = []

    def execute(self, callback: Optional[FillCallback] = None) -> FillRunReport:
        """
        Run every eligible job, captcha jobs first.

        Args:
            callback: Passed through to each job's delivery and called with
                      its FillOutcome.

        Returns:
            A FillRunReport with one JobResult per input job.
        """
        report = FillRunReport()
        captcha_jobs, noncaptcha_jobs = self.filter_jobs()
        report.results.extend(self.filtered_out)

        self._run_group(captcha_jobs, report, callback, requires_captcha=True)
        self._run_group(noncaptcha_jobs, report, callback, requires_captcha=False)

        report.completed_at = datetime.utcnow()
        logger.info(
            "Fill run finished: %d deleted, %d retained, %d skipped",
            report.deleted, report.retained, report.skipped,
        )
        return report

    def filter_jobs(self) -> list[list[Any]]:
        """Split jobs into ``[captcha_jobs, noncaptcha_jobs]``, keeping input order.

        Jobs whose recipient fails the regex, or cannot be resolved, are left
        out of both groups and noted in ``filtered_out``.
        """
        captcha_jobs: list[Any] = []
        noncaptcha_jobs: list[Any] = []
        self.filtered_out = []

        for job in self.jobs:
            try:
                recipient = self.directory.retrieve(job.recipient_id)
            except RecipientNotFound as e:
                logger.warning("Skipping job #%s: %s", job.id, e)
                self.filtered_out.append(JobResult(
                    job_id=job.id,
                    recipient_id=str(job.recipient_id),
                    disposition=JobDisposition.UNRESOLVED,
                    error=str(e),
                ))
                continue

            if self.regex is not None and not self.regex.search(recipient.bioguide_id):
                logger.debug("Job #%s filtered out by regex", job.id)
                self.filtered_out.append(JobResult(
                    job_id=job.id,
                    recipient_id=recipient.bioguide_id,
                    disposition=JobDisposition.FILTERED,
                ))
                continue

            if recipient.requires_captcha:
                captcha_jobs.append(job)
            else:
                noncaptcha_jobs.append(job)

        return [captcha_jobs, noncaptcha_jobs]

    def run_job(self, job: Any, callback: Optional[FillCallback] = None) -> bool:
        """
        Deliver one job with overrides applied. Returns True on success.

        CWC-enabled recipients get a CWC message; everyone else gets a form
        fill. Either way exactly one FillStatus is recorded for the attempt,
        including an attempt that fails before any delivery starts.
        """
        fields = {**(job.fields or {}), **self.overrides}
        try:
            recipient = self.directory.retrieve(job.recipient_id)
            via_cwc = self.cwc_office_supported(recipient)
            filler = None if via_cwc else self.form_filler_factory(
                recipient, fields, job.campaign_tag
            )
        except Exception as e:
            logger.exception("Job #%s could not be started", job.id)
            outcome = FillOutcome.error(f"{type(e).__name__}: {e}")
            self.db.record_fill(
                str(job.recipient_id),
                outcome,
                campaign_tag=job.campaign_tag,
                delivery_path=UNSTARTED_PATH,
            )
            notify(callback, outcome, str(job.recipient_id))
            return False

        if filler is None:
            outcome = self.cwc.message_via_cwc(
                recipient,
                fields,
                campaign_tag=job.campaign_tag,
                organization=getattr(job, "organization", None),
            )
            notify(callback, outcome, recipient.bioguide_id)
        else:
            outcome = filler.fill_out_form(callback)

        return outcome.ok

    def cwc_office_supported(self, recipient: RecipientDescriptor) -> bool:
        """True when ``recipient`` should be reached through CWC.

        A configured allow-list decides on its own. Without one, the CWC
        endpoint's list of accepting offices is consulted.
        """
        if not recipient.supports_cwc or self.cwc is None:
            return False
        if self.cwc_offices is not None:
            return recipient.cwc_office_code in self.cwc_offices
        return bool(self.cwc.office_supported(recipient.cwc_office_code))

    # ---- Internal ----

    def _run_group(
        self,
        jobs: list[Any],
        report: FillRunReport,
        callback: Optional[FillCallback],
        requires_captcha: bool,
    ) -> None:
        """Submit a group of jobs and wait for every one of them to finish."""
        pending = []
        for job in jobs:
            try:
                proceed = self.preprocess(job)
            except Exception as e:
                logger.exception("Preprocess hook raised for job #%s, holding it", job.id)
                report.results.append(JobResult(
                    job_id=job.id,
                    recipient_id=str(job.recipient_id),
                    disposition=JobDisposition.HELD,
                    requires_captcha=requires_captcha,
                    error=f"{type(e).__name__}: {e}",
                ))
                continue
            if not proceed:
                logger.info("Job #%s held by preprocess hook", job.id)
                report.results.append(JobResult(
                    job_id=job.id,
                    recipient_id=str(job.recipient_id),
                    disposition=JobDisposition.HELD,
                    requires_captcha=requires_captcha,
                ))
                continue
            pending.append((job, self.executor.submit(self.run_job, job, callback)))

        for job, future in pending:
            result = JobResult(
                job_id=job.id,
                recipient_id=str(job.recipient_id),
                disposition=JobDisposition.RETAINED,
                requires_captcha=requires_captcha,
            )
            try:
                succeeded = future.result()
            except Exception as e:
                logger.exception("Job #%s raised during delivery", job.id)
                succeeded = False
                result.error = f"{type(e).__name__}: {e}"

            if succeeded:
                self.db.delete_job(job.id)
                result.disposition = JobDisposition.DELETED
                logger.info("Job #%s delivered and deleted", job.id)
            else:
                logger.info("Job #%s failed, keeping it for retry", job.id)
            report.results.append(result)

    def _default_form_filler(
        self,
        recipient: RecipientDescriptor,
        fields: dict[str, str],
        campaign_tag: Optional[str],
    ) -> FormFiller:
        return FormFiller(recipient, fields, campaign_tag, self.db)
