from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from cpjudge.errors import AlreadyAccepted, OperationCancelled, PollTimeoutWarning, RejectedByPlatform
from cpjudge.http_client import sleep_interruptibly
from cpjudge.scrapers.common import JudgeStatus, Problem, ProblemRef, SubmissionStatus

logger = logging.getLogger(__name__)


class PollState(str, Enum):
    PENDING = 'pending'
    JUDGING = 'judging'
    DONE = 'done'


def _now():
    return datetime.now(timezone.utc)


@dataclass
class SubmissionRecord:
    problem: ProblemRef
    contest_id: str
    source: str
    language_id: str
    submission_id: str
    url: str
    state: PollState = PollState.PENDING
    verdict: SubmissionStatus | None = None
    last_status: JudgeStatus | None = None
    submitted_at: datetime | None = None
    updated_at: datetime | None = None
    finished_at: datetime | None = None
    polls: int = 0
    warning: PollTimeoutWarning | None = None

    @property
    def is_done(self) -> bool:
        return self.state is PollState.DONE

    @property
    def verdict_text(self) -> str:
        if self.last_status is None:
            return ''
        return self.last_status.raw

    def observe(self, status: JudgeStatus):
        """Apply one verdict-cell reading. A DONE record never changes again."""
        if self.state is PollState.DONE:
            return
        self.polls += 1
        self.last_status = status
        self.updated_at = _now()
        if status.status.is_terminal:
            self.state = PollState.DONE
            self.verdict = status.status
            self.finished_at = self.updated_at
            self.warning = None
        elif status.status is SubmissionStatus.JUDGING:
            self.state = PollState.JUDGING


class SubmitService:
    def __init__(self, auth, scraper, initial_interval: float = 1.0, max_interval: float = 8.0,
                 max_wait: float = 120.0, cancel_event: threading.Event | None = None,
                 clock=time.monotonic, sleep=None):
        self.auth = auth
        self.scraper = scraper
        self.initial_interval = initial_interval
        self.max_interval = max_interval
        self.max_wait = max_wait
        self.cancel_event = cancel_event or threading.Event()
        self._clock = clock
        self._sleep = sleep or (lambda seconds: sleep_interruptibly(seconds, self.cancel_event))

    @classmethod
    def from_config(cls, auth, scraper, config, **kwargs) -> 'SubmitService':
        kwargs.setdefault('initial_interval', config.POLL_INITIAL_INTERVAL)
        kwargs.setdefault('max_interval', config.POLL_MAX_INTERVAL)
        kwargs.setdefault('max_wait', config.POLL_MAX_WAIT)
        return cls(auth, scraper, **kwargs)

    def submit(self, contest_id: str, problem: ProblemRef | Problem, source: str,
               language_id: str, skip_checking_if_accepted: bool = False) -> SubmissionRecord:
        """Post ``source`` and return a PENDING record.

        Raises AlreadyAccepted when the platform lists the problem as solved,
        unless ``skip_checking_if_accepted`` is set.
        """
        ref = _as_ref(problem)
        platform = self.scraper.PLATFORM
        session = self.auth.session
        submit_url = self.scraper.submit_url(contest_id, ref)
        sent = {}

        def prepare():
            # Fresh CSRF token from the submit page; also used after a re-login
            page = self.auth.get(submit_url)
            token = self.scraper.extract_csrf_token(page.text, session.cookies) or session.csrf_token
            sent['token'] = token
            action = self.scraper.extract_submit_action(page.text) or submit_url
            form = self.scraper.build_submit_form(ref, source, language_id, token)
            if self.scraper.SUBMIT_MULTIPART:
                body = {'files': {name: (None, value) for name, value in form.items()}}
            else:
                body = {'data': form}
            return action, body

        def refresh(url, kwargs):
            action, body = prepare()
            kwargs = {k: v for k, v in kwargs.items() if k not in ('data', 'files')}
            return action, dict(kwargs, **body)

        with self.auth.operation():
            self.auth.ensure_authenticated(required=True)

            if not skip_checking_if_accepted and self.scraper.filter_solved(self.auth, [ref]):
                raise AlreadyAccepted(
                    f"{ref.problem_id} is already accepted; pass skip_checking_if_accepted to resubmit",
                    platform=platform, problem_id=ref.problem_id,
                )

            action, body = prepare()
            logger.info(f"Submitting {platform.value}/{contest_id}/{ref.problem_id} (language {language_id})")
            resp = self.auth.request(
                'POST', action,
                refresh=refresh,
                is_unprocessed=lambda r: self.scraper.extract_submission_id(r) is None,
                **body,
            )
        token = sent.get('token')

        if resp.status_code >= 400:
            message = self.scraper.extract_submit_error(resp.text) or f'HTTP {resp.status_code}'
            raise RejectedByPlatform(
                f"submission rejected: {message}",
                platform=platform, problem_id=ref.problem_id, status_code=resp.status_code,
            )

        submission_id = self.scraper.extract_submission_id(resp)
        if submission_id is None:
            message = self.scraper.extract_submit_error(resp.text) or 'no submission id in the response'
            raise RejectedByPlatform(
                f"submission rejected: {message}",
                platform=platform, problem_id=ref.problem_id, status_code=resp.status_code,
            )
        if token:
            session.csrf_token = token

        now = _now()
        record = SubmissionRecord(
            problem=ref,
            contest_id=contest_id,
            source=source,
            language_id=language_id,
            submission_id=submission_id,
            url=self.scraper.submission_url(contest_id, submission_id),
            submitted_at=now,
            updated_at=now,
        )
        logger.info(f"Submission {submission_id} accepted for judging")
        return record

    def check(self, record: SubmissionRecord) -> SubmissionRecord:
        """Read the verdict cell once."""
        if record.is_done:
            return record
        resp = self.auth.get(record.url)
        status = self.scraper.extract_submission_status(resp.text)
        record.observe(status)
        logger.debug(f"Submission {record.submission_id}: {status.raw or status.status.value}")
        return record

    def poll(self, record: SubmissionRecord, max_wait: float | None = None) -> SubmissionRecord:
        """Check until a terminal verdict appears or ``max_wait`` elapses.

        The interval starts at ``initial_interval`` and doubles up to
        ``max_interval``. Running out of time is not an error: the record
        comes back JUDGING with a PollTimeoutWarning attached.
        """
        if record.is_done:
            return record
        max_wait = self.max_wait if max_wait is None else max_wait
        interval = self.initial_interval
        started = self._clock()

        with self.auth.operation():
            while True:
                if self.cancel_event.is_set():
                    raise OperationCancelled(
                        f'stopped polling submission {record.submission_id}',
                        platform=self.scraper.PLATFORM, problem_id=record.problem.problem_id,
                    )

                self.check(record)
                if record.is_done:
                    logger.info(f"Submission {record.submission_id}: {record.verdict.value}")
                    return record

                elapsed = self._clock() - started
                if elapsed >= max_wait:
                    record.state = PollState.JUDGING
                    record.warning = PollTimeoutWarning(record.submission_id, elapsed)
                    logger.warning(str(record.warning))
                    return record

                delay = min(interval, max_wait - elapsed)
                if self._sleep(delay):
                    raise OperationCancelled(
                        f'stopped polling submission {record.submission_id}',
                        platform=self.scraper.PLATFORM, problem_id=record.problem.problem_id,
                    )
                interval = min(interval * 2, self.max_interval)

    def submit_and_wait(self, contest_id: str, problem, source: str, language_id: str,
                        max_wait: float | None = None,
                        skip_checking_if_accepted: bool = False) -> SubmissionRecord:
        record = self.submit(contest_id, problem, source, language_id,
                             skip_checking_if_accepted=skip_checking_if_accepted)
        return self.poll(record, max_wait=max_wait)


def _as_ref(problem) -> ProblemRef:
    if isinstance(problem, ProblemRef):
        return problem
    return ProblemRef(problem_id=problem.problem_id, name=problem.name, url=problem.url)
