from .comparator import AnyComparator, ExactComparator, ToleranceComparator, make_comparator
from .harness import ExecutionOutcome, ExecutionVerdict, Limits, RunReport, TestHarness

__all__ = [
    'AnyComparator',
    'ExactComparator',
    'ToleranceComparator',
    'make_comparator',
    'ExecutionOutcome',
    'ExecutionVerdict',
    'Limits',
    'RunReport',
    'TestHarness',
]
