from __future__ import annotations

import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Comment, Tag

from cpjudge.errors import (
    AsymmetricSamples,
    LanguageResolutionError,
    NetworkError,
    UnrecognizedLayout,
)
from .common import (
    Contest,
    ExtractionTarget,
    JudgeStatus,
    Platform,
    Problem,
    ProblemRef,
    TestCase,
)

_CHALLENGE_MARKERS = (
    r'g-recaptcha',
    r'h-captcha',
    r'cf-turnstile',
    r'id="challenge-form"',
)

# "absolute or relative error ... at most 10^{-6}" and the like
_TOLERANCE_RE = re.compile(
    r'(?:absolute|relative)\s+(?:or\s+relative\s+)?error.{0,120}?'
    r'(?:10\s*\^\s*\{?\s*[-−]\s*(\d+)\s*\}?|1e[-−](\d+))',
    re.IGNORECASE | re.DOTALL,
)
_TOLERANCE_JA_RE = re.compile(
    r'(?:絶対誤差|相対誤差).{0,80}?10\s*\^\s*\{?\s*[-−]\s*(\d+)',
    re.DOTALL,
)
_MEMORY_RE = re.compile(
    r'(\d+(?:\.\d+)?)\s*(KB|KiB|MB|MiB|megabytes?|GB|GiB|gigabytes?)', re.IGNORECASE,
)
_UNIT_BYTES = {
    'kb': 1024, 'kib': 1024,
    'mb': 1024 ** 2, 'mib': 1024 ** 2, 'megabyte': 1024 ** 2, 'megabytes': 1024 ** 2,
    'gb': 1024 ** 3, 'gib': 1024 ** 3, 'gigabyte': 1024 ** 3, 'gigabytes': 1024 ** 3,
}


@dataclass(frozen=True)
class AuthProfile:
    """Per-platform login configuration.

    Marker strings are regular expressions searched in response bodies. The
    ``success_markers`` may carry a ``username`` named group.
    """

    login_path: str
    username_field: str = 'username'
    password_field: str = 'password'
    csrf_field: str | None = 'csrf_token'
    csrf_location: str = 'input'          # input | meta | cookie | none
    csrf_meta_name: str | None = None
    extra_fields: tuple = ()
    token_cookie: str | None = None       # platforms logged in by a pasted cookie
    success_markers: tuple = ()
    login_form_markers: tuple = ()
    invalid_markers: tuple = ()
    expired_markers: tuple = ()
    challenge_markers: tuple = _CHALLENGE_MARKERS
    login_redirect_paths: tuple = ()


@dataclass
class SampleBlock:
    """A <pre> holding sample data; ``kind`` is None when the page has no label."""

    kind: str | None
    text: str
    label: str | None = None


class BaseScraper(ABC):
    """Fixed extraction strategy for one platform.

    Subclasses implement the capability set (problem rows, sample blocks,
    verdict cell, problem header) by structural traversal; the pairing,
    normalisation and error reporting live here so every platform produces
    the same output contract.
    """

    PLATFORM: Platform = None
    PLATFORM_DISPLAY: str = ''
    BASE_URL: str = ''
    REQUIRES_LOGIN: bool = False
    SUBMIT_MULTIPART: bool = False
    AUTH: AuthProfile = None
    LANGUAGE_IDS: dict = {}
    SUBMISSION_ID_RE = re.compile(r'/submissions?/(\d+)')

    def __init__(self, auth: AuthProfile | None = None, base_url: str | None = None):
        self.auth = auth or self.AUTH
        self.base_url = (base_url or self.BASE_URL).rstrip('/')
        self.logger = logging.getLogger(f'scraper.{self.PLATFORM.value}')

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    def absolute_url(self, path: str) -> str:
        return urljoin(self.base_url + '/', path)

    @property
    def login_url(self) -> str:
        return self.absolute_url(self.auth.login_path)

    @property
    def home_url(self) -> str:
        return self.base_url + '/'

    @abstractmethod
    def contest_url(self, contest_id: str) -> str:
        ...

    @abstractmethod
    def submit_url(self, contest_id: str, problem: ProblemRef) -> str:
        ...

    @abstractmethod
    def submission_url(self, contest_id: str, submission_id: str) -> str:
        ...

    # ------------------------------------------------------------------
    # Capability set
    # ------------------------------------------------------------------

    @abstractmethod
    def locate_problem_rows(self, soup: BeautifulSoup) -> list[Tag]:
        ...

    @abstractmethod
    def parse_problem_row(self, row: Tag) -> ProblemRef | None:
        ...

    @abstractmethod
    def locate_statement(self, soup: BeautifulSoup) -> Tag | None:
        ...

    @abstractmethod
    def locate_sample_blocks(self, statement: Tag) -> list[SampleBlock]:
        ...

    @abstractmethod
    def parse_problem_header(self, soup: BeautifulSoup, statement: Tag) -> dict:
        """Return name, time_limit_ms, memory_limit_bytes and interactive."""

    @abstractmethod
    def locate_verdict_cell(self, soup: BeautifulSoup) -> Tag | None:
        ...

    @abstractmethod
    def map_status(self, raw_status: str) -> JudgeStatus:
        ...

    @abstractmethod
    def build_submit_form(self, problem: ProblemRef, source: str,
                          language_id: str, csrf_token: str | None) -> dict:
        ...

    def standalone_problem_ref(self, contest_id: str, problem_id: str) -> ProblemRef | None:
        """ProblemRef for platforms that address problems outside any contest."""
        return None

    def testcase_archive_url(self, problem: ProblemRef) -> str | None:
        """URL of the full judge data archive, for platforms that publish one."""
        return None

    def solved_problems_url(self, username: str) -> str | None:
        """API listing the problems ``username`` has solved, where the platform has one."""
        return None

    def parse_solved_problems(self, text: str) -> set[str]:
        return set()

    def problem_key(self, problem: ProblemRef) -> str:
        """Identifier of ``problem`` as the solved-problems listing spells it."""
        return problem.problem_id

    @property
    def tracks_solved(self) -> bool:
        return type(self).solved_problems_url is not BaseScraper.solved_problems_url

    def filter_solved(self, auth, problems: list[ProblemRef]) -> list[ProblemRef]:
        """The subset of ``problems`` the logged-in user has already solved.

        Empty when the platform keeps no such listing or nobody is logged in.
        """
        username = auth.session.username
        if not self.tracks_solved or not username:
            return []
        url = self.solved_problems_url(username)
        resp = auth.get(url)
        if resp.status_code >= 400:
            raise NetworkError(
                f"{url} returned {resp.status_code}",
                platform=self.PLATFORM, url=url, status_code=resp.status_code,
            )
        solved = self.parse_solved_problems(resp.text)
        self.logger.debug(f"{username} has solved {len(solved)} problem(s)")
        return [p for p in problems if self.problem_key(p) in solved]

    def parse_contest_name(self, soup: BeautifulSoup, contest_id: str) -> str:
        title = soup.find('title')
        return title.get_text(strip=True) if title else contest_id

    # ------------------------------------------------------------------
    # Shared extraction contract
    # ------------------------------------------------------------------

    def extract(self, raw: str, target: ExtractionTarget, **context):
        """Dispatch on ``target``; ``context`` carries contest_id / problem."""
        if target is ExtractionTarget.PROBLEM_LIST:
            return self.extract_contest(raw, context['contest_id'])
        if target is ExtractionTarget.PROBLEM_DETAIL:
            return self.extract_problem(raw, context['problem'])
        if target is ExtractionTarget.TEST_CASES:
            return self.extract_test_cases(raw, context.get('problem_id'))
        if target is ExtractionTarget.SUBMISSION_STATUS:
            return self.extract_submission_status(raw)
        raise ValueError(f"Unknown extraction target: {target}")

    def extract_contest(self, html: str, contest_id: str) -> Contest:
        soup = BeautifulSoup(html, 'html.parser')
        problems = []
        seen = set()
        for row in self.locate_problem_rows(soup):
            ref = self.parse_problem_row(row)
            if ref is None or ref.problem_id in seen:
                continue
            seen.add(ref.problem_id)
            problems.append(ref)

        if not problems:
            raise UnrecognizedLayout(
                f"no problem rows found for contest {contest_id}",
                snippet=soup.get_text(' ', strip=True),
                platform=self.PLATFORM,
            )
        return Contest(
            contest_id=contest_id,
            name=self.parse_contest_name(soup, contest_id),
            problems=problems,
        )

    def extract_problem(self, html: str, problem: ProblemRef) -> Problem:
        soup = BeautifulSoup(html, 'html.parser')
        statement = self._require_statement(soup, problem.problem_id)
        header = self.parse_problem_header(soup, statement)
        text = statement.get_text('\n', strip=True)
        return Problem(
            problem_id=problem.problem_id,
            name=header.get('name') or problem.name,
            url=problem.url,
            time_limit_ms=header.get('time_limit_ms'),
            memory_limit_bytes=header.get('memory_limit_bytes'),
            statement=text,
            comparator_hint=detect_tolerance(text),
            interactive=bool(header.get('interactive')),
        )

    def extract_test_cases(self, html: str, problem_id: str | None = None,
                           comparator_hint: str | None = None,
                           interactive: bool = False) -> list[TestCase]:
        soup = BeautifulSoup(html, 'html.parser')
        statement = self._require_statement(soup, problem_id)
        blocks = self.locate_sample_blocks(statement)
        if not blocks:
            if interactive:
                return []
            raise UnrecognizedLayout(
                'no sample blocks found',
                snippet=statement.get_text(' ', strip=True),
                platform=self.PLATFORM,
                problem_id=problem_id,
            )
        pairs = self._pair_samples(blocks, problem_id)
        names = _sample_names(pairs)
        return [
            TestCase(
                name=name,
                input=normalize_sample(inp.text).encode('utf-8'),
                expected=normalize_sample(out.text).encode('utf-8'),
                comparator_hint=comparator_hint,
            )
            for name, (inp, out) in zip(names, pairs)
        ]

    def extract_problem_with_samples(self, html: str, problem: ProblemRef) -> Problem:
        """ProblemDetail and TestCases from one page (all supported platforms)."""
        detail = self.extract_problem(html, problem)
        detail.test_cases = self.extract_test_cases(
            html,
            problem.problem_id,
            comparator_hint=detail.comparator_hint,
            interactive=detail.interactive,
        )
        return detail

    def extract_submission_status(self, html: str) -> JudgeStatus:
        soup = BeautifulSoup(html, 'html.parser')
        cell = self.locate_verdict_cell(soup)
        if cell is None:
            raise UnrecognizedLayout(
                'verdict cell not found',
                snippet=soup.get_text(' ', strip=True),
                platform=self.PLATFORM,
            )
        raw = ' '.join(cell.get_text(' ', strip=True).split())
        return self.map_status(raw)

    def extract_csrf_token(self, html: str, cookies=None) -> str | None:
        profile = self.auth
        if profile.csrf_location == 'none' or not profile.csrf_field:
            return None
        if profile.csrf_location == 'cookie':
            return cookies.get(profile.csrf_field) if cookies is not None else None

        soup = BeautifulSoup(html, 'html.parser')
        if profile.csrf_location == 'meta':
            meta = soup.find('meta', attrs={'name': profile.csrf_meta_name or profile.csrf_field})
            if meta and meta.get('content'):
                return meta['content']
        node = soup.find('input', attrs={'name': profile.csrf_field})
        if node and node.get('value'):
            return node['value']
        return None

    def extract_username(self, html: str) -> str | None:
        for marker in self.auth.success_markers:
            m = re.search(marker, html)
            if m:
                return m.groupdict().get('username') or m.group(0)
        return None

    def extract_submission_id(self, response) -> str | None:
        """Submission id from redirect Locations, the final URL, then the body."""
        locations = [r.headers.get('Location', '') for r in getattr(response, 'history', [])]
        locations.append(response.headers.get('Location', ''))
        locations.append(getattr(response, 'url', '') or '')
        for location in locations:
            m = self.SUBMISSION_ID_RE.search(location or '')
            if m:
                return m.group(1)
        return self.extract_submission_id_from_body(response.text)

    def extract_submission_id_from_body(self, html: str) -> str | None:
        return None

    def extract_submit_error(self, html: str) -> str | None:
        return None

    def extract_submit_action(self, html: str) -> str | None:
        """Form action of the submit page when it differs from submit_url."""
        return None

    # ------------------------------------------------------------------
    # Authentication markers
    # ------------------------------------------------------------------

    def _has_marker(self, html: str, markers) -> bool:
        return any(re.search(marker, html, re.IGNORECASE) for marker in markers)

    def has_login_form(self, html: str) -> bool:
        return self._has_marker(html, self.auth.login_form_markers)

    def has_challenge(self, html: str) -> bool:
        return self._has_marker(html, self.auth.challenge_markers)

    def has_invalid_credentials_marker(self, html: str) -> bool:
        return self._has_marker(html, self.auth.invalid_markers)

    def is_expired(self, response) -> bool:
        """True when a response is really the login prompt of an expired session."""
        url = getattr(response, 'url', '') or ''
        for path in self.auth.login_redirect_paths:
            if path in url:
                return True
        return self._has_marker(response.text, self.auth.expired_markers)

    # ------------------------------------------------------------------
    # Languages
    # ------------------------------------------------------------------

    def resolve_language(self, source_path: str, problem_id: str | None = None) -> str:
        ext = os.path.splitext(source_path)[1].lstrip('.')
        candidates = self.LANGUAGE_IDS.get(ext, ())
        if len(candidates) == 1:
            return candidates[0]
        raise LanguageResolutionError(
            ext, candidates, platform=self.PLATFORM, problem_id=problem_id,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_statement(self, soup: BeautifulSoup, problem_id: str | None) -> Tag:
        statement = self.locate_statement(soup)
        if statement is None:
            raise UnrecognizedLayout(
                'problem statement not found',
                snippet=soup.get_text(' ', strip=True),
                platform=self.PLATFORM,
                problem_id=problem_id,
            )
        return statement

    def _pair_samples(self, blocks: list[SampleBlock], problem_id) -> list[tuple[SampleBlock, SampleBlock]]:
        """Pair input/output blocks.

        Labelled blocks are paired by adjacency (input then output); when the
        labels do not alternate, the k-th input goes with the k-th output.
        Unlabelled blocks are paired by position.
        """
        if all(b.kind is None for b in blocks):
            if len(blocks) % 2:
                raise AsymmetricSamples(
                    (len(blocks) + 1) // 2, len(blocks) // 2,
                    platform=self.PLATFORM, problem_id=problem_id,
                )
            return [(blocks[i], blocks[i + 1]) for i in range(0, len(blocks), 2)]

        inputs = [b for b in blocks if b.kind == 'input']
        outputs = [b for b in blocks if b.kind == 'output']
        if len(inputs) != len(outputs):
            raise AsymmetricSamples(
                len(inputs), len(outputs), platform=self.PLATFORM, problem_id=problem_id,
            )

        pairs = []
        pending = None
        for block in blocks:
            if block.kind == 'input' and pending is None:
                pending = block
            elif block.kind == 'output' and pending is not None:
                pairs.append((pending, block))
                pending = None
            else:
                break
        else:
            if pending is None:
                return pairs

        self.logger.debug(f"Samples of {problem_id} do not alternate, pairing by ordinal")
        return list(zip(inputs, outputs))

    def with_auth(self, **changes) -> 'BaseScraper':
        """Copy of this scraper with some AuthProfile fields overridden."""
        return type(self)(auth=replace(self.auth, **changes), base_url=self.base_url)


def text_from_pre(pre: Tag) -> str:
    """Verbatim text of a sample <pre>, honouring <br> and per-line <div>s."""
    lines = pre.find_all('div', class_=re.compile(r'test-example-line'))
    if lines:
        return '\n'.join(line.get_text() for line in lines)
    parts = []
    for node in pre.descendants:
        if isinstance(node, Tag):
            if node.name == 'br':
                parts.append('\n')
        elif not isinstance(node, Comment):
            parts.append(str(node))
    return ''.join(parts)


def _sample_names(pairs) -> list[str]:
    """``sample<label>`` from the input blocks' labels, ordinals when missing or repeated."""
    labels = [inp.label for inp, _ in pairs]
    if all(labels) and len(set(labels)) == len(labels):
        return [f'sample{label}' for label in labels]
    return [f'sample{i}' for i in range(1, len(pairs) + 1)]


def normalize_sample(text: str) -> str:
    """CRLF to LF, drop the newline HTML ignores after <pre>, strip trailing newlines.

    Internal whitespace is kept verbatim.
    """
    text = text.replace('\r\n', '\n')
    if text.startswith('\n'):
        text = text[1:]
    return text.rstrip('\n')


def detect_tolerance(text: str | None) -> str | None:
    """Comparator hint like 'float:1e-06' when a statement allows an error margin."""
    if not text:
        return None
    m = _TOLERANCE_RE.search(text)
    if m:
        exponent = int(m.group(1) or m.group(2))
        return f'float:1e-{exponent:02d}'
    m = _TOLERANCE_JA_RE.search(text)
    if m:
        return f'float:1e-{int(m.group(1)):02d}'
    return None


def parse_memory_limit(text: str) -> int | None:
    m = _MEMORY_RE.search(text or '')
    if not m:
        return None
    unit = m.group(2).lower()
    return int(float(m.group(1)) * _UNIT_BYTES.get(unit, 1024 ** 2))


def parse_time_limit_ms(text: str) -> int | None:
    m = re.search(r'(\d+(?:\.\d+)?)\s*(ms|milliseconds?|sec|seconds?|s|秒)', text or '', re.IGNORECASE)
    if not m:
        return None
    value = float(m.group(1))
    unit = m.group(2).lower()
    if unit.startswith('ms') or unit.startswith('milli'):
        return int(value)
    return int(round(value * 1000))
