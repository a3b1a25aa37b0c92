from __future__ import annotations

import logging
import signal
import threading
from contextlib import contextmanager

from cpjudge import load_config
from cpjudge.auth import Authenticator, Credentials
from cpjudge.http_client import HttpClient
from cpjudge.runner.comparator import make_comparator
from cpjudge.runner.harness import Limits, TestHarness
from cpjudge.scrapers import get_scraper_instance
from cpjudge.scrapers.common import Platform
from cpjudge.services.scrape_service import ScrapeService
from cpjudge.services.submit_service import SubmitService
from cpjudge.session import SessionStore

logger = logging.getLogger(__name__)


@contextmanager
def cancel_on_interrupt(cancel_event: threading.Event | None = None):
    """Turn the first Ctrl-C into ``cancel_event.set()``.

    A second Ctrl-C raises KeyboardInterrupt as usual. Only effective in the
    main thread; elsewhere the event is yielded without a handler.
    """
    cancel_event = cancel_event or threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield cancel_event
        return

    previous = signal.getsignal(signal.SIGINT)

    def handler(signum, frame):
        if cancel_event.is_set():
            signal.signal(signal.SIGINT, previous)
            raise KeyboardInterrupt
        logger.warning('Interrupted, cancelling (press Ctrl-C again to abort)')
        cancel_event.set()

    signal.signal(signal.SIGINT, handler)
    try:
        yield cancel_event
    finally:
        signal.signal(signal.SIGINT, previous)


class JudgeClient:
    """One platform's session, scraper, harness and submitter wired together."""

    def __init__(self, platform, config=None, credentials: Credentials | None = None,
                 http=None, cancel_event: threading.Event | None = None):
        self.platform = Platform(platform)
        self.config = config or load_config()
        self.cancel_event = cancel_event or threading.Event()

        self.scraper = get_scraper_instance(self.platform)
        self.store = SessionStore(self.config.SESSION_DIR)
        self.session = self.store.load(self.platform)
        self.http = HttpClient.from_config(
            self.session, self.config, http=http, cancel_event=self.cancel_event,
        )
        self.auth = Authenticator(
            self.session, self.http, self.scraper,
            store=self.store,
            credentials=credentials or Credentials.from_env(self.platform),
        )
        self.scrape_service = ScrapeService(self.auth, self.scraper, cancel_event=self.cancel_event)
        self.submit_service = SubmitService.from_config(
            self.auth, self.scraper, self.config, cancel_event=self.cancel_event,
        )
        self.harness = TestHarness.from_config(self.config, cancel_event=self.cancel_event)
        self._contest_of = {}

    def login(self, credentials: Credentials | None = None):
        return self.auth.login(credentials)

    def logout(self):
        self.auth.logout()

    def scrape(self, contest_id: str, problem_ids=None):
        result = self.scrape_service.scrape_contest(contest_id, problem_ids)
        for problem in result.problems:
            self._contest_of[problem.url] = contest_id
        return result

    def fetch_full_test_cases(self, problem, only_solved: bool = True):
        return self.scrape_service.fetch_full_test_cases(problem, only_solved=only_solved)

    def test(self, problem, command, compile_command=None, parallelism=None,
             comparator_mode: str | None = None, epsilon: float | None = None,
             limits: Limits | None = None, test_cases=None, **kwargs):
        """Run ``command`` on the problem's samples (or ``test_cases``)."""
        comparator = None
        if comparator_mode or epsilon is not None:
            comparator = make_comparator(
                comparator_mode or 'float', abs_eps=epsilon, hint=problem.comparator_hint,
            )
        limits = limits or Limits.for_problem(problem, output_limit=self.harness.output_limit)
        return self.harness.run(
            command,
            problem.test_cases if test_cases is None else test_cases,
            limits=limits,
            parallelism=parallelism,
            comparator=comparator,
            compile_command=compile_command,
            problem_id=problem.problem_id,
            **kwargs,
        )

    def submit(self, problem, source_path: str, language_id: str | None = None,
               wait: bool = True, contest_id: str | None = None, max_wait: float | None = None,
               skip_checking_if_accepted: bool = False):
        contest_id = contest_id or self._contest_of.get(problem.url)
        if contest_id is None:
            raise ValueError(f"contest of problem {problem.problem_id} is unknown; pass contest_id")

        language_id = language_id or self.scraper.resolve_language(source_path, problem.problem_id)
        with open(source_path, encoding='utf-8') as f:
            source = f.read()

        record = self.submit_service.submit(
            contest_id, problem, source, language_id,
            skip_checking_if_accepted=skip_checking_if_accepted,
        )
        if not wait:
            return record
        return self.submit_service.poll(record, max_wait=max_wait)

    def close(self):
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
