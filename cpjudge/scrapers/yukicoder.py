from __future__ import annotations

import json
import logging
import re
from urllib.parse import quote

from bs4 import BeautifulSoup, NavigableString, Tag

from cpjudge.errors import UnrecognizedLayout
from .base import AuthProfile, BaseScraper, SampleBlock, text_from_pre
from .common import JudgeStatus, Platform, ProblemRef, SubmissionStatus
from . import register_scraper

logger = logging.getLogger(__name__)

_STATUS_MAP = {
    'AC': SubmissionStatus.AC,
    'WA': SubmissionStatus.WA,
    'TLE': SubmissionStatus.TLE,
    'MLE': SubmissionStatus.MLE,
    'OLE': SubmissionStatus.OLE,
    'RE': SubmissionStatus.RE,
    'CE': SubmissionStatus.CE,
    'QLE': SubmissionStatus.WA,    # Query Limit Exceeded (interactive)
    'IE': SubmissionStatus.IE,
    'WJ': SubmissionStatus.PENDING,
    'Judge': SubmissionStatus.JUDGING,
    'Judging': SubmissionStatus.JUDGING,
    'Compiling': SubmissionStatus.JUDGING,
}

# " / 実行時間制限 : 1ケース 2.000秒 / メモリ制限 : 512 MB / 通常問題"
_LIMITS_RE = re.compile(
    r'実行時間制限\s*:\s*1ケース\s*(\d+)\.(\d{3})秒\s*/\s*メモリ制限\s*:\s*(\d+)\s*MB'
    r'\s*/\s*(通常|スペシャルジャッジ|リアクティブ)問題'
)
_PROBLEM_HREF_RE = re.compile(r'/problems/no/(\d+)')


@register_scraper
class YukicoderScraper(BaseScraper):
    PLATFORM = Platform.YUKICODER
    PLATFORM_DISPLAY = "yukicoder"
    BASE_URL = "https://yukicoder.me"
    REQUIRES_LOGIN = False
    SUBMIT_MULTIPART = True

    # yukicoder only offers OAuth login; users paste their REVEL_SESSION cookie
    AUTH = AuthProfile(
        login_path='/',
        csrf_field='csrf_token',
        csrf_location='input',
        token_cookie='REVEL_SESSION',
        login_form_markers=(r'href="/auth/(?:github|twitter)"',),
        expired_markers=(r'ログインしてください',),
        login_redirect_paths=('/login',),
    )

    LANGUAGE_IDS = {
        'cpp': ('cpp', 'cpp14', 'cpp17', 'cpp-clang'),
        'cxx': ('cpp', 'cpp14', 'cpp17', 'cpp-clang'),
        'cc': ('cpp', 'cpp14', 'cpp17', 'cpp-clang'),
        'C': ('cpp', 'cpp14', 'cpp17', 'cpp-clang'),
        'c': ('c11', 'c'),
        'java': ('java8',),
        'cs': ('csharp', 'csharp_mono'),
        'pl': ('perl', 'perl6'),
        'p6': ('perl6',),
        'php': ('php', 'php7'),
        'py': ('python', 'python3', 'pypy2', 'pypy3'),
        'py2': ('python', 'pypy2'),
        'py3': ('python3', 'pypy3'),
        'rb': ('ruby',),
        'd': ('d',),
        'go': ('go',),
        'hs': ('haskell',),
        'scala': ('scala',),
        'nim': ('nim',),
        'rs': ('rust',),
        'kt': ('kotlin',),
        'scm': ('scheme',),
        'cr': ('crystal',),
        'swift': ('swift',),
        'ml': ('ocaml',),
        'clj': ('clojure',),
        'fs': ('fsharp',),
        'ex': ('elixir',),
        'exs': ('elixir',),
        'lua': ('lua',),
        'f90': ('fortran',),
        'js': ('node',),
        'sh': ('sh',),
        'bash': ('sh',),
        'txt': ('text',),
        'asm': ('nasm',),
        'bf': ('bf',),
        'ws': ('Whitespace',),
    }

    def contest_url(self, contest_id: str) -> str:
        return self.absolute_url(f'/contests/{contest_id}')

    def problem_url(self, problem_no: str) -> str:
        return self.absolute_url(f'/problems/no/{problem_no}')

    def standalone_problem_ref(self, contest_id: str, problem_id: str) -> ProblemRef | None:
        if contest_id.lower() != 'no':
            return None
        return ProblemRef(
            problem_id=problem_id,
            name=f'No.{problem_id}',
            url=self.problem_url(problem_id),
        )

    def submit_url(self, contest_id: str, problem: ProblemRef) -> str:
        return problem.url.rstrip('/') + '/submit'

    def submission_url(self, contest_id: str, submission_id: str) -> str:
        return self.absolute_url(f'/submissions/{submission_id}')

    def testcase_archive_url(self, problem: ProblemRef) -> str:
        return problem.url.rstrip('/') + '/testcase.zip'

    def solved_problems_url(self, username: str) -> str:
        return self.absolute_url(f'/api/v1/solved/name/{quote(username)}')

    def parse_solved_problems(self, text: str) -> set[str]:
        # [{"No": 1, "ProblemId": 1, "Title": "..."}, ...]
        try:
            return {str(item['No']) for item in json.loads(text)}
        except (ValueError, TypeError, KeyError) as e:
            raise UnrecognizedLayout(
                'unexpected solved-problems response', snippet=text, platform=self.PLATFORM,
            ) from e

    def problem_key(self, problem: ProblemRef) -> str:
        m = _PROBLEM_HREF_RE.search(problem.url)
        return m.group(1) if m else problem.problem_id

    def locate_problem_rows(self, soup: BeautifulSoup) -> list[Tag]:
        return soup.select('#content table.table tbody tr')

    def parse_problem_row(self, row: Tag) -> ProblemRef | None:
        tds = row.find_all('td')
        if len(tds) < 3:
            return None
        link = tds[2].find('a', href=_PROBLEM_HREF_RE)
        if link is None:
            return None
        return ProblemRef(
            problem_id=tds[0].get_text(strip=True).upper(),
            name=link.get_text(strip=True),
            url=self.absolute_url(link['href']),
        )

    def parse_contest_name(self, soup: BeautifulSoup, contest_id: str) -> str:
        heading = soup.select_one('#content h1') or soup.select_one('#content h3')
        if heading:
            return heading.get_text(strip=True)
        return super().parse_contest_name(soup, contest_id)

    def locate_statement(self, soup: BeautifulSoup) -> Tag | None:
        return soup.select_one('#content')

    def locate_sample_blocks(self, statement: Tag) -> list[SampleBlock]:
        blocks = []
        for paragraph in statement.select('div.block div.sample div.paragraph'):
            pres = paragraph.find_all('pre')
            for index, pre in enumerate(pres[:2]):
                blocks.append(SampleBlock(
                    kind='input' if index == 0 else 'output',
                    text=text_from_pre(pre),
                ))
        return blocks

    def _limits_match(self, statement: Tag):
        for div in statement.find_all('div', recursive=False):
            for node in div.children:
                if isinstance(node, NavigableString):
                    m = _LIMITS_RE.search(' '.join(str(node).split()))
                    if m:
                        return m
        return _LIMITS_RE.search(' '.join(statement.get_text(' ', strip=True).split()))

    def parse_problem_header(self, soup: BeautifulSoup, statement: Tag) -> dict:
        name = None
        heading = statement.find('h3')
        if heading:
            name = heading.get_text(strip=True)
            m = re.match(r'^No\.\d+\s+(.*)$', name)
            if m:
                name = m.group(1)

        time_limit_ms = None
        memory_limit_bytes = None
        interactive = False
        m = self._limits_match(statement)
        if m:
            time_limit_ms = int(m.group(1)) * 1000 + int(m.group(2))
            memory_limit_bytes = int(m.group(3)) * 1024 * 1024
            interactive = m.group(4) == 'リアクティブ'
        return {
            'name': name,
            'time_limit_ms': time_limit_ms,
            'memory_limit_bytes': memory_limit_bytes,
            'interactive': interactive,
            'special_judge': bool(m) and m.group(4) == 'スペシャルジャッジ',
        }

    def extract_problem(self, html: str, problem: ProblemRef):
        detail = super().extract_problem(html, problem)
        soup = BeautifulSoup(html, 'html.parser')
        statement = self.locate_statement(soup)
        if statement is not None and self.parse_problem_header(soup, statement).get('special_judge'):
            # Any correct answer is accepted; only the input is meaningful locally
            detail.comparator_hint = detail.comparator_hint or 'any'
        return detail

    def extract_username(self, html: str) -> str | None:
        soup = BeautifulSoup(html, 'html.parser')
        link = soup.select_one('#usermenu > a')
        if link is None:
            return None
        name = link.get_text(strip=True)
        return name or None

    def locate_verdict_cell(self, soup: BeautifulSoup) -> Tag | None:
        return soup.select_one('#status') or soup.select_one('#content table tr td span.label')

    def map_status(self, raw_status: str) -> JudgeStatus:
        raw = (raw_status or '').strip()
        status = _STATUS_MAP.get(raw.split(' ')[0] if raw else raw, SubmissionStatus.UNKNOWN)
        return JudgeStatus(status=status, raw=raw)

    def build_submit_form(self, problem: ProblemRef, source: str,
                          language_id: str, csrf_token: str | None) -> dict:
        return {
            'csrf_token': csrf_token or '',
            'lang': language_id,
            'source': source,
        }

    def extract_submit_action(self, html: str) -> str | None:
        soup = BeautifulSoup(html, 'html.parser')
        form = soup.select_one('#submit_form')
        if form is not None and form.get('action'):
            return self.absolute_url(form['action'])
        return None
