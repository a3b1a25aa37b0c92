from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Platform(str, Enum):
    ATCODER = 'atcoder'
    CODEFORCES = 'codeforces'
    YUKICODER = 'yukicoder'


class ExtractionTarget(str, Enum):
    PROBLEM_LIST = 'problem_list'
    PROBLEM_DETAIL = 'problem_detail'
    TEST_CASES = 'test_cases'
    SUBMISSION_STATUS = 'submission_status'


class SubmissionStatus(str, Enum):
    AC = 'AC'
    WA = 'WA'
    TLE = 'TLE'
    MLE = 'MLE'
    RE = 'RE'
    CE = 'CE'
    OLE = 'OLE'
    IE = 'IE'
    UNKNOWN = 'UNKNOWN'
    PENDING = 'PENDING'
    JUDGING = 'JUDGING'

    @property
    def is_terminal(self) -> bool:
        return self not in (SubmissionStatus.PENDING, SubmissionStatus.JUDGING)


@dataclass(frozen=True)
class TestCase:
    """One sample: input and expected output, trailing newline stripped."""

    __test__ = False

    name: str
    input: bytes
    expected: bytes
    comparator_hint: str | None = None


@dataclass(frozen=True)
class ProblemRef:
    problem_id: str
    name: str
    url: str


@dataclass
class Contest:
    contest_id: str
    name: str
    problems: list[ProblemRef] = field(default_factory=list)
    start_time: datetime | None = None
    end_time: datetime | None = None


@dataclass
class Problem:
    problem_id: str
    name: str
    url: str = ''
    time_limit_ms: int | None = None
    memory_limit_bytes: int | None = None
    test_cases: list[TestCase] = field(default_factory=list)
    statement: str | None = None
    comparator_hint: str | None = None
    interactive: bool = False


@dataclass(frozen=True)
class JudgeStatus:
    """Verdict cell as read from a submission page."""

    status: SubmissionStatus
    raw: str
    progress: str | None = None
