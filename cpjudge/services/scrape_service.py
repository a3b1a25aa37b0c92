from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace

from cpjudge.errors import AuthError, ExtractError, NetworkError, OperationCancelled
from cpjudge.scrapers.archive import extract_test_cases
from cpjudge.scrapers.common import Contest, Problem, ProblemRef

logger = logging.getLogger(__name__)


@dataclass
class ScrapeFailure:
    problem_id: str
    error: Exception

    def __str__(self):
        return f"{self.problem_id}: {self.error}"


@dataclass
class ScrapeResult:
    """Problems that were scraped, plus the per-problem failures."""

    contest: Contest
    problems: list[Problem] = field(default_factory=list)
    errors: list[ScrapeFailure] = field(default_factory=list)
    not_reached: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors and not self.cancelled


class ScrapeService:
    def __init__(self, auth, scraper, cancel_event: threading.Event | None = None):
        self.auth = auth
        self.scraper = scraper
        self.cancel_event = cancel_event or threading.Event()

    def scrape_contest(self, contest_id: str, problem_ids=None) -> ScrapeResult:
        """Fetch the problem list, then each problem's detail and samples.

        Requests go out one after another through the platform limiter. A
        problem whose page cannot be fetched or parsed is recorded in
        ``errors`` and skipped. An authentication failure before the problem
        list is fetched aborts the call; once problems are being scraped it is
        recorded against the problem it hit, the rest go to ``not_reached``
        and the problems scraped so far are returned.
        """
        with self.auth.operation():
            self.auth.ensure_authenticated()
            contest = self._fetch_contest(contest_id, problem_ids)
            result = ScrapeResult(contest=contest)

            wanted = contest.problems
            if problem_ids:
                by_id = {ref.problem_id.upper(): ref for ref in contest.problems}
                wanted = []
                for problem_id in problem_ids:
                    ref = by_id.get(str(problem_id).upper())
                    if ref is None:
                        result.errors.append(ScrapeFailure(
                            str(problem_id),
                            ExtractError(f"no problem {problem_id} in contest {contest_id}",
                                         platform=self.scraper.PLATFORM, problem_id=str(problem_id)),
                        ))
                    else:
                        wanted.append(ref)

            for index, ref in enumerate(wanted):
                if self.cancel_event.is_set():
                    result.cancelled = True
                    result.not_reached = [r.problem_id for r in wanted[index:]]
                    break
                try:
                    result.problems.append(self.scrape_problem(ref))
                except OperationCancelled:
                    result.cancelled = True
                    result.not_reached = [r.problem_id for r in wanted[index:]]
                    break
                except (ExtractError, NetworkError) as e:
                    if e.problem_id is None:
                        e.problem_id = ref.problem_id
                    logger.warning(f"Skipping {contest_id}/{ref.problem_id}: {e}")
                    result.errors.append(ScrapeFailure(ref.problem_id, e))
                except AuthError as e:
                    if e.problem_id is None:
                        e.problem_id = ref.problem_id
                    logger.warning(f"Stopping {contest_id} at {ref.problem_id}: {e}")
                    result.errors.append(ScrapeFailure(ref.problem_id, e))
                    result.not_reached = [r.problem_id for r in wanted[index + 1:]]
                    break

        logger.info(
            f"Scraped {len(result.problems)}/{len(contest.problems)} problems of "
            f"{self.scraper.PLATFORM.value}/{contest_id} ({len(result.errors)} failed)"
        )
        return result

    def _fetch_contest(self, contest_id: str, problem_ids) -> Contest:
        if problem_ids:
            refs = [self.scraper.standalone_problem_ref(contest_id, str(p)) for p in problem_ids]
            if all(refs):
                return Contest(contest_id=contest_id, name=contest_id, problems=refs)

        resp = self.auth.get(self.scraper.contest_url(contest_id))
        self._check_status(resp)
        return self.scraper.extract_contest(resp.text, contest_id)

    def _check_status(self, resp, problem_id=None):
        if resp.status_code >= 400:
            raise NetworkError(
                f"{resp.url} returned {resp.status_code}",
                platform=self.scraper.PLATFORM, problem_id=problem_id,
                url=resp.url, status_code=resp.status_code,
            )

    def scrape_problem(self, ref: ProblemRef) -> Problem:
        resp = self.auth.get(ref.url)
        self._check_status(resp, ref.problem_id)
        problem = self.scraper.extract_problem_with_samples(resp.text, ref)
        logger.debug(f"{ref.problem_id}: {len(problem.test_cases)} sample(s)")
        return problem

    def fetch_full_test_cases(self, problem: ProblemRef | Problem, only_solved: bool = True):
        """Download the platform's full judge data for ``problem``.

        Where the platform lists solved problems, the archive is only fetched
        for problems the logged-in user has solved unless ``only_solved`` is
        False.
        """
        ref = problem if isinstance(problem, ProblemRef) else ProblemRef(
            problem_id=problem.problem_id, name=problem.name, url=problem.url,
        )
        url = self.scraper.testcase_archive_url(ref)
        if url is None:
            raise ExtractError(
                f"{self.scraper.PLATFORM_DISPLAY} does not publish test case archives",
                platform=self.scraper.PLATFORM, problem_id=ref.problem_id,
            )

        with self.auth.operation():
            self.auth.ensure_authenticated()
            if only_solved and self.scraper.tracks_solved:
                if not self.scraper.filter_solved(self.auth, [ref]):
                    raise ExtractError(
                        f"{ref.problem_id} is not solved by "
                        f"{self.auth.session.username or 'the anonymous session'}; "
                        f"full test cases are only fetched for solved problems",
                        platform=self.scraper.PLATFORM, problem_id=ref.problem_id,
                    )
            resp = self.auth.get(url)
        self._check_status(resp, ref.problem_id)
        cases = extract_test_cases(resp.content, problem_id=ref.problem_id)
        hint = getattr(problem, 'comparator_hint', None)
        if hint:
            cases = [replace(case, comparator_hint=hint) for case in cases]
        logger.info(f"Fetched {len(cases)} test case(s) for {ref.problem_id}")
        return cases
