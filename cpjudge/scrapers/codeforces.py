from __future__ import annotations

import logging
import re

from bs4 import BeautifulSoup, Tag

from .base import (
    AuthProfile,
    BaseScraper,
    SampleBlock,
    parse_memory_limit,
    parse_time_limit_ms,
    text_from_pre,
)
from .common import JudgeStatus, Platform, ProblemRef, SubmissionStatus
from . import register_scraper

logger = logging.getLogger(__name__)

# Verdict text prefixes, most specific first
_VERDICT_PREFIXES = (
    ('Accepted', SubmissionStatus.AC),
    ('Pretests passed', SubmissionStatus.AC),
    ('Happy New Year', SubmissionStatus.AC),
    ('Perfect result', SubmissionStatus.AC),
    ('Partial result', SubmissionStatus.WA),
    ('Wrong answer', SubmissionStatus.WA),
    ('Hacked', SubmissionStatus.WA),
    ('Presentation error', SubmissionStatus.WA),
    ('Time limit exceeded', SubmissionStatus.TLE),
    ('Idleness limit exceeded', SubmissionStatus.TLE),
    ('Memory limit exceeded', SubmissionStatus.MLE),
    ('Runtime error', SubmissionStatus.RE),
    ('Compilation error', SubmissionStatus.CE),
    ('Output limit exceeded', SubmissionStatus.OLE),
    ('Denial of judgement', SubmissionStatus.IE),
    ('Judgement failed', SubmissionStatus.IE),
    ('Skipped', SubmissionStatus.UNKNOWN),
    ('Rejected', SubmissionStatus.UNKNOWN),
    ('In queue', SubmissionStatus.PENDING),
    ('Waiting', SubmissionStatus.PENDING),
    ('Compiling', SubmissionStatus.JUDGING),
    ('Running', SubmissionStatus.JUDGING),
    ('Testing', SubmissionStatus.JUDGING),
)

_RUNNING_RE = re.compile(r'(?:Running|Testing) on (?:pre)?test (\d+)', re.IGNORECASE)
_PROBLEM_HREF_RE = re.compile(r'/(?:contest|gym)/(\d+)/problem/([A-Za-z0-9]+)')


@register_scraper
class CodeforcesScraper(BaseScraper):
    PLATFORM = Platform.CODEFORCES
    PLATFORM_DISPLAY = "Codeforces"
    BASE_URL = "https://codeforces.com"
    REQUIRES_LOGIN = False
    SUBMISSION_ID_RE = re.compile(r'/submission/(\d+)')

    AUTH = AuthProfile(
        login_path='/enter',
        username_field='handleOrEmail',
        password_field='password',
        csrf_field='csrf_token',
        csrf_location='input',
        csrf_meta_name='X-Csrf-Token',
        extra_fields=(('action', 'enter'), ('remember', 'on'), ('_tta', '176')),
        success_markers=(
            r'<a href="/profile/(?P<username>[^"]+)">[^<]*</a>\s*\|\s*<a href="[^"]*/logout"',
            r'var handle\s*=\s*"(?P<username>[^"]+)"',
        ),
        login_form_markers=(r'id="enterForm"',),
        invalid_markers=(r'Invalid handle/email or password',),
        expired_markers=(r'id="enterForm"',),
        login_redirect_paths=('/enter?back=',),
    )

    LANGUAGE_IDS = {
        'c': ('43',),
        'cpp': ('54', '89'),       # G++17 / G++20
        'cc': ('54', '89'),
        'java': ('87',),
        'py': ('31', '70'),        # Python 3 / PyPy 3
        'rs': ('75',),
        'go': ('32',),
        'kt': ('88',),
        'hs': ('12',),
        'rb': ('67',),
        'cs': ('79',),
        'js': ('55',),
    }

    def _section(self, contest_id: str) -> str:
        # Gym contests use ids >= 100000
        return 'gym' if contest_id.isdigit() and int(contest_id) >= 100000 else 'contest'

    def contest_url(self, contest_id: str) -> str:
        return self.absolute_url(f'/{self._section(contest_id)}/{contest_id}')

    def submit_url(self, contest_id: str, problem: ProblemRef) -> str:
        return self.absolute_url(f'/{self._section(contest_id)}/{contest_id}/submit')

    def submission_url(self, contest_id: str, submission_id: str) -> str:
        return self.absolute_url(f'/{self._section(contest_id)}/{contest_id}/submission/{submission_id}')

    def locate_problem_rows(self, soup: BeautifulSoup) -> list[Tag]:
        return soup.select('table.problems tr')

    def parse_problem_row(self, row: Tag) -> ProblemRef | None:
        id_cell = row.find('td', class_='id')
        if id_cell is None:
            return None
        link = id_cell.find('a', href=_PROBLEM_HREF_RE)
        if link is None:
            return None
        index = link.get_text(strip=True)
        name = ''
        cells = row.find_all('td')
        if len(cells) > 1:
            name_link = cells[1].find('a')
            name = name_link.get_text(strip=True) if name_link else cells[1].get_text(strip=True)
        return ProblemRef(
            problem_id=index.upper(),
            name=name,
            url=self.absolute_url(link['href']),
        )

    def parse_contest_name(self, soup: BeautifulSoup, contest_id: str) -> str:
        th = soup.select_one('#sidebar table.rtable th a') or soup.select_one('#sidebar table.rtable th')
        if th:
            return th.get_text(strip=True)
        return super().parse_contest_name(soup, contest_id)

    def locate_statement(self, soup: BeautifulSoup) -> Tag | None:
        return soup.select_one('div.problem-statement')

    def locate_sample_blocks(self, statement: Tag) -> list[SampleBlock]:
        blocks = []
        sample_tests = statement.select_one('div.sample-tests')
        if sample_tests is None:
            return blocks
        for div in sample_tests.find_all('div', class_=['input', 'output']):
            pre = div.find('pre')
            if pre is None:
                continue
            kind = 'input' if 'input' in div.get('class', []) else 'output'
            blocks.append(SampleBlock(kind=kind, text=text_from_pre(pre)))
        return blocks

    def parse_problem_header(self, soup: BeautifulSoup, statement: Tag) -> dict:
        header = statement.select_one('div.header')
        if header is None:
            return {}

        def _property(css_class):
            node = header.select_one(f'div.{css_class}')
            if node is None:
                return ''
            title = node.select_one('div.property-title')
            text = node.get_text(' ', strip=True)
            if title:
                text = text.replace(title.get_text(' ', strip=True), '', 1)
            return text.strip()

        name = _property('title')
        if re.match(r'^[A-Za-z0-9]+\.\s', name):
            name = name.split('.', 1)[1].strip()

        statement_text = statement.get_text(' ', strip=True)
        return {
            'name': name or None,
            'time_limit_ms': parse_time_limit_ms(_property('time-limit')),
            'memory_limit_bytes': parse_memory_limit(_property('memory-limit')),
            'interactive': 'Interaction' in statement_text and 'interactive' in statement_text.lower(),
        }

    def locate_verdict_cell(self, soup: BeautifulSoup) -> Tag | None:
        return (
            soup.select_one('span.submissionVerdictWrapper')
            or soup.select_one('span.verdict-accepted, span.verdict-rejected, '
                               'span.verdict-waiting, span.verdict-failed')
        )

    def map_status(self, raw_status: str) -> JudgeStatus:
        raw = (raw_status or '').strip()
        running = _RUNNING_RE.search(raw)
        if running:
            return JudgeStatus(
                status=SubmissionStatus.JUDGING,
                raw=raw,
                progress=running.group(1),
            )
        lowered = raw.lower()
        for prefix, status in _VERDICT_PREFIXES:
            if lowered.startswith(prefix.lower()):
                return JudgeStatus(status=status, raw=raw)
        return JudgeStatus(status=SubmissionStatus.UNKNOWN, raw=raw)

    def build_submit_form(self, problem: ProblemRef, source: str,
                          language_id: str, csrf_token: str | None) -> dict:
        return {
            'csrf_token': csrf_token or '',
            'action': 'submitSolutionFormSubmitted',
            'submittedProblemIndex': problem.problem_id,
            'programTypeId': language_id,
            'source': source,
            'tabSize': '4',
            'sourceFile': '',
        }

    def extract_submission_id_from_body(self, html: str) -> str | None:
        soup = BeautifulSoup(html, 'html.parser')
        row = soup.find('tr', attrs={'data-submission-id': True})
        if row is not None:
            return row['data-submission-id']
        return None

    def extract_submit_error(self, html: str) -> str | None:
        soup = BeautifulSoup(html, 'html.parser')
        error = soup.select_one('span.error')
        if error:
            return error.get_text(' ', strip=True)
        return None
