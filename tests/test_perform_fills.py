"""
Tests for the batch fill runner.
"""

import threading
import time
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from contact_congress.dispatch.executors import PooledExecutor
from contact_congress.dispatch.runner import UNSTARTED_PATH, JobDisposition, PerformFills
from contact_congress.filers.form_filler import FormDriver, FormFiller
from contact_congress.tracker.directory import RecipientDirectory
from contact_congress.tracker.tracker import FillOutcome, FillResult, TrackerDB


MOCK_FIELDS = {
    "$NAME_PREFIX": "Ms.",
    "$NAME_FIRST": "Ada",
    "$NAME_LAST": "orig",
    "$ADDRESS_STREET": "1 Main St",
    "$ADDRESS_CITY": "Springfield",
    "$ADDRESS_STATE_POSTAL_ABBREV": "CA",
    "$ADDRESS_ZIP5": "94110",
    "$EMAIL": "ada@example.org",
    "$SUBJECT": "Privacy",
    "$MESSAGE": "Please protect our privacy.",
}

CAPTCHA_STEPS = [
    {"action": "visit"},
    {"action": "fill_in", "name": "last", "value": "$NAME_LAST"},
    {"action": "captcha", "name": "captcha_answer"},
    {"action": "submit"},
]

PLAIN_STEPS = [
    {"action": "fill_in", "name": "last", "value": "$NAME_LAST"},
    {"action": "submit"},
]


class RecordingDriver(FormDriver):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    def submit(self, recipient, fields):
        from contact_congress.errors import FormFillError

        self.calls.append((recipient.bioguide_id, dict(fields)))
        if self.fail:
            raise FormFillError("form rejected")


class _Base:
    def setup_method(self):
        self.db = TrackerDB("sqlite:///:memory:")
        self.db.add_recipient(
            "C000001", name="Captcha Rep", form_url="https://c.example.gov/contact",
            form_steps=CAPTCHA_STEPS,
        )
        self.db.add_recipient(
            "P000002", name="Plain Rep", form_url="https://p.example.gov/contact",
            form_steps=PLAIN_STEPS,
        )
        self.db.add_recipient("W000003", name="Cwc Rep", cwc_office_code="HCA03")
        self.directory = RecipientDirectory(self.db)

    def _job(self, recipient_id, fields=None, campaign_tag="net neutrality", organization=None):
        return self.db.enqueue_fill(
            recipient_id, fields or MOCK_FIELDS, campaign_tag=campaign_tag,
            organization=organization,
        )

    def _task(self, jobs, **kwargs):
        kwargs.setdefault("db", self.db)
        kwargs.setdefault("directory", self.directory)
        return PerformFills(jobs, **kwargs)


# ---------------------------------------------------------------------------
# execute
# ---------------------------------------------------------------------------

class TestExecute(_Base):
    def test_successful_job_is_deleted(self):
        job = self._job("C000001")
        task = self._task([job])
        with patch.object(task, "run_job", return_value=True) as run_job:
            report = task.execute()
        run_job.assert_called_once_with(job, None)
        assert self.db.get_job(job.id) is None
        assert report.deleted == 1

    def test_failed_job_is_retained(self):
        job = self._job("C000001")
        task = self._task([job])
        with patch.object(task, "run_job", return_value=False) as run_job:
            report = task.execute()
        run_job.assert_called_once_with(job, None)
        assert self.db.get_job(job.id) is not None
        assert report.retained == 1
        assert report.results[0].disposition is JobDisposition.RETAINED

    def test_runs_filtered_groups_in_order(self):
        captcha_job = SimpleNamespace(id=101, recipient_id="X")
        noncaptcha_job = SimpleNamespace(id=102, recipient_id="Y")
        task = self._task([])
        calls = []

        with patch.object(task, "filter_jobs", return_value=[[captcha_job], [noncaptcha_job]]):
            with patch.object(
                task, "run_job", side_effect=lambda job, cb: calls.append(job) or False
            ):
                task.execute()

        assert calls == [captcha_job, noncaptcha_job]

    def test_captcha_jobs_run_before_others_regardless_of_input_order(self):
        plain = self._job("P000002")
        captcha = self._job("C000001")
        task = self._task([plain, captcha])
        calls = []
        with patch.object(task, "run_job", side_effect=lambda job, cb: calls.append(job.id) or True):
            task.execute()
        assert calls == [captcha.id, plain.id]

    def test_regex_match_runs_job(self):
        job = self._job("C000001")
        task = self._task([job], regex=r"^C0+1$")
        with patch.object(task, "run_job", return_value=True) as run_job:
            task.execute()
        run_job.assert_called_once_with(job, None)

    def test_regex_miss_skips_job(self):
        job = self._job("C000001")
        task = self._task([job], regex=r"^$")
        with patch.object(task, "run_job") as run_job:
            report = task.execute()
        run_job.assert_not_called()
        assert self.db.get_job(job.id) is not None
        assert report.results[0].disposition is JobDisposition.FILTERED

    def test_unknown_recipient_is_left_alone(self):
        job = self._job("Z999999")
        task = self._task([job])
        with patch.object(task, "run_job") as run_job:
            report = task.execute()
        run_job.assert_not_called()
        assert self.db.get_job(job.id) is not None
        assert report.results[0].disposition is JobDisposition.UNRESOLVED

    def test_preprocess_veto_holds_job(self):
        job = self._job("P000002")
        task = self._task([job], preprocess=lambda j: False)
        with patch.object(task, "run_job") as run_job:
            report = task.execute()
        run_job.assert_not_called()
        assert self.db.get_job(job.id) is not None
        assert self.db.count_fill_statuses() == 0
        assert report.results[0].disposition is JobDisposition.HELD

    def test_preprocess_sees_each_job(self):
        first = self._job("P000002")
        second = self._job("P000002")
        seen = []
        task = self._task([first, second], preprocess=lambda j: seen.append(j.id) or j.id == first.id)
        with patch.object(task, "run_job", return_value=True) as run_job:
            task.execute()
        assert seen == [first.id, second.id]
        run_job.assert_called_once_with(first, None)
        assert self.db.get_job(second.id) is not None

    def test_exception_does_not_abort_batch(self):
        bad = self._job("C000001")
        good = self._job("P000002")
        task = self._task([bad, good])

        def run(job, cb):
            if job.id == bad.id:
                raise RuntimeError("browser crashed")
            return True

        with patch.object(task, "run_job", side_effect=run):
            report = task.execute()

        assert self.db.get_job(bad.id) is not None
        assert self.db.get_job(good.id) is None
        failed = [r for r in report.results if r.job_id == bad.id][0]
        assert failed.disposition is JobDisposition.RETAINED
        assert "browser crashed" in failed.error

    def test_preprocess_error_holds_job_and_finishes_batch(self):
        delivered = self._job("P000002")
        broken = self._job("P000002")
        driver = RecordingDriver()

        def preprocess(job):
            if job.id == broken.id:
                raise RuntimeError("hook bug")
            return True

        task = self._task(
            [delivered, broken],
            preprocess=preprocess,
            form_filler_factory=lambda r, f, t: FormFiller(r, f, t, self.db, driver=driver),
        )
        report = task.execute()

        assert self.db.get_job(delivered.id) is None
        assert self.db.get_job(broken.id) is not None
        assert len(driver.calls) == 1
        assert self.db.count_fill_statuses() == 1
        held = [r for r in report.results if r.job_id == broken.id][0]
        assert held.disposition is JobDisposition.HELD
        assert "hook bug" in held.error

    def test_callback_error_does_not_retain_delivered_job(self):
        job = self._job("P000002")
        task = self._task(
            [job],
            form_filler_factory=lambda r, f, t: FormFiller(
                r, f, t, self.db, driver=RecordingDriver()
            ),
        )

        def callback(outcome):
            raise RuntimeError("listener down")

        report = task.execute(callback)

        assert report.deleted == 1
        assert self.db.get_job(job.id) is None
        statuses = self.db.list_fill_statuses()
        assert [s.status for s in statuses] == [FillResult.SUCCESS]

    def test_callback_is_passed_to_run_job(self):
        job = self._job("P000002")
        task = self._task([job])
        callback = MagicMock()
        with patch.object(task, "run_job", return_value=True) as run_job:
            task.execute(callback)
        run_job.assert_called_once_with(job, callback)

    def test_pooled_executor_drains_captcha_group_first(self):
        captcha_jobs = [self._job("C000001") for _ in range(3)]
        plain_jobs = [self._job("P000002") for _ in range(3)]
        events = []
        lock = threading.Lock()

        def run(job, callback=None):
            with lock:
                events.append(("start", job.id))
            if job.recipient_id == "C000001":
                time.sleep(0.05)
            with lock:
                events.append(("end", job.id))
            return False

        with PooledExecutor(max_workers=4) as executor:
            task = self._task(plain_jobs + captcha_jobs, executor=executor)
            task.run_job = run
            report = task.execute()

        captcha_ids = {j.id for j in captcha_jobs}
        plain_ids = {j.id for j in plain_jobs}
        last_captcha_end = max(
            i for i, (kind, jid) in enumerate(events) if kind == "end" and jid in captcha_ids
        )
        first_plain_start = min(
            i for i, (kind, jid) in enumerate(events) if kind == "start" and jid in plain_ids
        )
        assert last_captcha_end < first_plain_start
        assert report.retained == 6

    def test_summary_lists_counts(self):
        job = self._job("P000002")
        task = self._task([job])
        with patch.object(task, "run_job", return_value=True):
            report = task.execute()
        text = report.summary()
        assert "Deleted:  1" in text
        assert "deleted" in text


# ---------------------------------------------------------------------------
# filter_jobs
# ---------------------------------------------------------------------------

class TestFilterJobs(_Base):
    def test_partitions_captcha_and_noncaptcha(self):
        captcha = self._job("C000001")
        plain = self._job("P000002")
        task = self._task([captcha, plain])
        assert task.filter_jobs() == [[captcha], [plain]]

    def test_preserves_relative_order(self):
        p1 = self._job("P000002")
        c1 = self._job("C000001")
        p2 = self._job("W000003")
        c2 = self._job("C000001")
        task = self._task([p1, c1, p2, c2])
        assert task.filter_jobs() == [[c1, c2], [p1, p2]]

    def test_regex_applies_to_bioguide(self):
        c = self._job("C000001")
        p = self._job("P000002")
        task = self._task([c, p], regex=r"^P")
        assert task.filter_jobs() == [[], [p]]


# ---------------------------------------------------------------------------
# run_job
# ---------------------------------------------------------------------------

class TestRunJob(_Base):
    def _factory(self, outcome=None):
        filler = MagicMock()
        filler.fill_out_form.return_value = outcome or FillOutcome.success()
        factory = MagicMock(return_value=filler)
        return factory, filler

    def test_fill_out_form_with_overrides(self):
        job = self._job("P000002")
        factory, filler = self._factory()
        task = self._task([job], overrides={"$NAME_LAST": "abc"}, form_filler_factory=factory)

        assert task.run_job(job) is True

        recipient = self.directory.retrieve("P000002")
        expected = dict(MOCK_FIELDS, **{"$NAME_LAST": "abc"})
        factory.assert_called_once_with(recipient, expected, "net neutrality")
        filler.fill_out_form.assert_called_once_with(None)

    def test_failed_fill_returns_false(self):
        job = self._job("P000002")
        factory, _ = self._factory(FillOutcome.error("nope"))
        task = self._task([job], form_filler_factory=factory)
        assert task.run_job(job) is False

    def test_recipient_without_office_code_uses_form(self):
        job = self._job("P000002")
        cwc = MagicMock()
        factory, _ = self._factory()
        task = self._task([job], cwc=cwc, form_filler_factory=factory)
        task.run_job(job)
        cwc.message_via_cwc.assert_not_called()
        factory.assert_called_once()

    def test_cwc_recipient_uses_message_via_cwc(self):
        job = self._job("W000003")
        cwc = MagicMock()
        cwc.message_via_cwc.return_value = FillOutcome.success()
        factory, _ = self._factory()
        task = self._task(
            [job], cwc=cwc, overrides={"$NAME_LAST": "abc"}, form_filler_factory=factory
        )

        assert task.run_job(job) is True

        recipient = self.directory.retrieve("W000003")
        cwc.message_via_cwc.assert_called_once_with(
            recipient,
            dict(MOCK_FIELDS, **{"$NAME_LAST": "abc"}),
            campaign_tag="net neutrality",
            organization=None,
        )
        factory.assert_not_called()

    def test_cwc_failure_returns_false(self):
        job = self._job("W000003")
        cwc = MagicMock()
        cwc.message_via_cwc.return_value = FillOutcome.error("HTTP 500")
        task = self._task([job], cwc=cwc)
        assert task.run_job(job) is False

    def test_cwc_job_keeps_organization(self):
        job = self._job("W000003", organization="eff")
        cwc = MagicMock()
        cwc.message_via_cwc.return_value = FillOutcome.success()
        task = self._task([job], cwc=cwc)
        task.run_job(job)
        assert cwc.message_via_cwc.call_args.kwargs["organization"] == "eff"

    def test_office_outside_allow_list_uses_form(self):
        job = self._job("W000003")
        cwc = MagicMock()
        factory, _ = self._factory()
        task = self._task([job], cwc=cwc, form_filler_factory=factory, cwc_offices=["HCA99"])
        task.run_job(job)
        cwc.message_via_cwc.assert_not_called()
        factory.assert_called_once()

    def test_cwc_not_configured_uses_form(self):
        job = self._job("W000003")
        factory, _ = self._factory()
        task = self._task([job], form_filler_factory=factory)
        task.run_job(job)
        factory.assert_called_once()

    def test_callback_passed_to_fill_out_form(self):
        job = self._job("P000002")
        factory, filler = self._factory()
        callback = MagicMock()
        task = self._task([job], form_filler_factory=factory)
        task.run_job(job, callback)
        filler.fill_out_form.assert_called_once_with(callback)

    def test_cwc_path_calls_callback_with_outcome(self):
        job = self._job("W000003")
        outcome = FillOutcome.success()
        cwc = MagicMock()
        cwc.message_via_cwc.return_value = outcome
        callback = MagicMock()
        task = self._task([job], cwc=cwc)
        task.run_job(job, callback)
        callback.assert_called_once_with(outcome)

    def test_cwc_callback_error_still_reports_success(self):
        job = self._job("W000003")
        cwc = MagicMock()
        cwc.message_via_cwc.return_value = FillOutcome.success()
        task = self._task([job], cwc=cwc)
        assert task.run_job(job, MagicMock(side_effect=RuntimeError("listener down"))) is True

    def test_office_list_decides_without_allow_list(self):
        job = self._job("W000003")
        cwc = MagicMock()
        cwc.office_supported.return_value = False
        factory, _ = self._factory()
        task = self._task([job], cwc=cwc, form_filler_factory=factory)
        task.run_job(job)
        cwc.office_supported.assert_called_once_with("HCA03")
        cwc.message_via_cwc.assert_not_called()
        factory.assert_called_once()

    def test_allow_list_skips_office_list(self):
        job = self._job("W000003")
        cwc = MagicMock()
        cwc.message_via_cwc.return_value = FillOutcome.success()
        task = self._task([job], cwc=cwc, cwc_offices=["HCA03"])
        assert task.run_job(job) is True
        cwc.office_supported.assert_not_called()

    def test_unknown_recipient_records_error_outcome(self):
        job = self._job("Z999999")
        received = []
        task = self._task([job])

        assert task.run_job(job, received.append) is False

        statuses = self.db.list_fill_statuses()
        assert len(statuses) == 1
        assert statuses[0].status == FillResult.ERROR
        assert statuses[0].delivery_path == UNSTARTED_PATH
        assert statuses[0].recipient_id == "Z999999"
        assert "RecipientNotFound" in statuses[0].message
        assert [o.ok for o in received] == [False]

    def test_factory_error_records_error_outcome(self):
        job = self._job("P000002")
        factory = MagicMock(side_effect=RuntimeError("no browser"))
        task = self._task([job], form_filler_factory=factory)

        assert task.run_job(job) is False

        statuses = self.db.list_fill_statuses(status=FillResult.ERROR)
        assert len(statuses) == 1
        assert statuses[0].message == "RuntimeError: no browser"
        assert self.db.get_campaign_tag("net neutrality") is None

    def test_real_form_filler_records_outcome(self):
        job = self._job("P000002")
        driver = RecordingDriver()
        received = []
        task = self._task(
            [job],
            form_filler_factory=lambda r, f, t: FormFiller(r, f, t, self.db, driver=driver),
        )

        report = task.execute(received.append)

        assert report.deleted == 1
        assert driver.calls == [("P000002", MOCK_FIELDS)]
        assert received == [FillOutcome.success()]
        statuses = self.db.list_fill_statuses()
        assert len(statuses) == 1
        assert statuses[0].status == FillResult.SUCCESS
        assert self.db.get_campaign_tag("net neutrality") is not None

    def test_real_form_filler_failure_keeps_job(self):
        job = self._job("P000002")
        driver = RecordingDriver(fail=True)
        task = self._task(
            [job],
            form_filler_factory=lambda r, f, t: FormFiller(r, f, t, self.db, driver=driver),
        )

        report = task.execute()

        assert report.retained == 1
        assert self.db.get_job(job.id) is not None
        statuses = self.db.list_fill_statuses(status=FillResult.ERROR)
        assert statuses[0].message == "form rejected"
        assert self.db.get_campaign_tag("net neutrality") is None
