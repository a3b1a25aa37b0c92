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

# AtCoder judge status codes
_STATUS_MAP = {
    'AC': SubmissionStatus.AC,
    'WA': SubmissionStatus.WA,
    'TLE': SubmissionStatus.TLE,
    'MLE': SubmissionStatus.MLE,
    'RE': SubmissionStatus.RE,
    'CE': SubmissionStatus.CE,
    'OLE': SubmissionStatus.OLE,
    'IE': SubmissionStatus.IE,
    'WJ': SubmissionStatus.PENDING,    # Waiting for Judge
    'WR': SubmissionStatus.PENDING,    # Waiting for Re-judge
    'Judging': SubmissionStatus.JUDGING,
}

_SAMPLE_INPUT_RE = re.compile(r'(Sample Input|入力例)\s*(\d*)', re.IGNORECASE)
_SAMPLE_OUTPUT_RE = re.compile(r'(Sample Output|出力例)\s*(\d*)', re.IGNORECASE)
_PROGRESS_RE = re.compile(r'^(\d+)\s*/\s*(\d+)\s*(.*)$')
_TASK_HREF_RE = re.compile(r'/contests/([^/]+)/tasks/([^/?#]+)')


@register_scraper
class AtCoderScraper(BaseScraper):
    PLATFORM = Platform.ATCODER
    PLATFORM_DISPLAY = "AtCoder"
    BASE_URL = "https://atcoder.jp"
    REQUIRES_LOGIN = True

    AUTH = AuthProfile(
        login_path='/login',
        username_field='username',
        password_field='password',
        csrf_field='csrf_token',
        csrf_location='input',
        success_markers=(r'userScreenName\s*=\s*"(?P<username>[^"]+)"',),
        login_form_markers=(r'<input[^>]+name="password"',),
        invalid_markers=(
            r'Username or Password is incorrect',
            r'ユーザ名またはパスワードが正しくありません',
        ),
        expired_markers=(r'<input[^>]+name="password"',),
        login_redirect_paths=('/login?continue=',),
    )

    LANGUAGE_IDS = {
        'c': ('5017',),
        'cpp': ('5001',),
        'cc': ('5001',),
        'cxx': ('5001',),
        'java': ('5005',),
        'py': ('5055', '5078'),   # CPython / PyPy
        'rs': ('5054',),
        'go': ('5002',),
        'hs': ('5025',),
        'kt': ('5004',),
        'rb': ('5018',),
        'cs': ('5003',),
    }

    def contest_url(self, contest_id: str) -> str:
        return self.absolute_url(f'/contests/{contest_id}/tasks')

    def submit_url(self, contest_id: str, problem: ProblemRef) -> str:
        return self.absolute_url(f'/contests/{contest_id}/submit')

    def submission_url(self, contest_id: str, submission_id: str) -> str:
        return self.absolute_url(f'/contests/{contest_id}/submissions/{submission_id}')

    def locate_problem_rows(self, soup: BeautifulSoup) -> list[Tag]:
        return soup.select('#main-container table tbody tr') or soup.select('table tbody tr')

    def parse_problem_row(self, row: Tag) -> ProblemRef | None:
        tds = row.find_all('td')
        if len(tds) < 2:
            return None
        link = tds[1].find('a', href=_TASK_HREF_RE)
        if link is None:
            return None
        letter = tds[0].get_text(strip=True)
        if not letter:
            return None
        return ProblemRef(
            problem_id=letter.upper(),
            name=link.get_text(strip=True),
            url=self.absolute_url(link['href']),
        )

    def parse_contest_name(self, soup: BeautifulSoup, contest_id: str) -> str:
        title = soup.select_one('a.contest-title')
        if title:
            return title.get_text(strip=True)
        return super().parse_contest_name(soup, contest_id)

    def locate_statement(self, soup: BeautifulSoup) -> Tag | None:
        root = soup.select_one('#task-statement')
        if root is None:
            return None
        # The page carries both a Japanese and an English copy
        return root.select_one('span.lang-en') or root.select_one('span.lang-ja') or root

    def locate_sample_blocks(self, statement: Tag) -> list[SampleBlock]:
        blocks = []
        for heading in statement.find_all(['h3', 'h4']):
            title = heading.get_text(' ', strip=True)
            m_in = _SAMPLE_INPUT_RE.search(title)
            m_out = _SAMPLE_OUTPUT_RE.search(title)
            if not (m_in or m_out):
                continue
            pre = heading.find_next_sibling('pre') or heading.find_next('pre')
            if pre is None:
                continue
            m = m_in or m_out
            blocks.append(SampleBlock(
                kind='input' if m_in else 'output',
                text=text_from_pre(pre),
                label=m.group(2) or None,
            ))
        return blocks

    def parse_problem_header(self, soup: BeautifulSoup, statement: Tag) -> dict:
        name = None
        heading = soup.select_one('span.h2')
        if heading:
            name = heading.find(string=True, recursive=False) or heading.get_text(strip=True)
            name = name.strip()
            if ' - ' in name:
                name = name.split(' - ', 1)[1].strip()

        limits_text = ''
        for p in soup.find_all('p'):
            text = p.get_text(' ', strip=True)
            if 'Time Limit' in text or '実行時間制限' in text:
                limits_text = text
                break

        time_limit_ms = None
        memory_limit_bytes = None
        if limits_text:
            time_part, _, memory_part = limits_text.partition('/')
            time_limit_ms = parse_time_limit_ms(time_part)
            memory_limit_bytes = parse_memory_limit(memory_part)

        statement_text = statement.get_text(' ', strip=True)
        interactive = (
            'This is an interactive task' in statement_text
            or 'インタラクティブ' in statement_text
        )
        return {
            'name': name,
            'time_limit_ms': time_limit_ms,
            'memory_limit_bytes': memory_limit_bytes,
            'interactive': interactive,
        }

    def locate_verdict_cell(self, soup: BeautifulSoup) -> Tag | None:
        return soup.select_one('#judge-status') or soup.select_one('td.submission-score + td span.label')

    def map_status(self, raw_status: str) -> JudgeStatus:
        """Map an AtCoder status label ('AC', 'WJ', '3/12 WA', ...) to JudgeStatus."""
        raw = (raw_status or '').strip()
        m = _PROGRESS_RE.match(raw)
        if m:
            # Partial progress is always shown while the judge is still running
            return JudgeStatus(
                status=SubmissionStatus.JUDGING,
                raw=raw,
                progress=f'{m.group(1)}/{m.group(2)}',
            )
        status = _STATUS_MAP.get(raw.split(' ')[0] if raw else raw, SubmissionStatus.UNKNOWN)
        return JudgeStatus(status=status, raw=raw)

    def build_submit_form(self, problem: ProblemRef, source: str,
                          language_id: str, csrf_token: str | None) -> dict:
        task_screen_name = problem.url.rstrip('/').rsplit('/', 1)[-1]
        return {
            'data.TaskScreenName': task_screen_name,
            'data.LanguageId': language_id,
            'sourceCode': source,
            'csrf_token': csrf_token or '',
        }

    def extract_submission_id_from_body(self, html: str) -> str | None:
        # /submissions/me lists the newest submission first
        soup = BeautifulSoup(html, 'html.parser')
        for link in soup.select('table tbody tr a[href]'):
            m = re.search(r'/submissions/(\d+)$', link['href'])
            if m:
                return m.group(1)
        return None

    def extract_submit_error(self, html: str) -> str | None:
        soup = BeautifulSoup(html, 'html.parser')
        alert = soup.select_one('div.alert-danger')
        if alert:
            return ' '.join(alert.get_text(' ', strip=True).split())
        return None
