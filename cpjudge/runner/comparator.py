"""Output comparison.

``ExactComparator`` compares bytes after stripping trailing newlines.
``ToleranceComparator`` splits both sides on whitespace and accepts numeric
tokens within an absolute or relative epsilon; other tokens must match
exactly. ``AnyComparator`` accepts everything (special-judge problems).
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass

_HINT_RE = re.compile(r'^float:(?P<eps>[0-9.eE+-]+)$')


def normalize_output(data: bytes) -> bytes:
    return data.replace(b'\r\n', b'\n').rstrip(b'\n')


@dataclass(frozen=True)
class Comparison:
    accepted: bool
    mismatches: int = 0
    first_mismatch: str | None = None


class ExactComparator:
    mode = 'exact'

    def compare(self, actual: bytes, expected: bytes) -> Comparison:
        a = normalize_output(actual)
        e = normalize_output(expected)
        if a == e:
            return Comparison(True)
        a_lines = a.split(b'\n')
        e_lines = e.split(b'\n')
        mismatches = sum(1 for x, y in zip(a_lines, e_lines) if x != y)
        mismatches += abs(len(a_lines) - len(e_lines))
        first = next(
            (i for i, (x, y) in enumerate(zip(a_lines, e_lines)) if x != y),
            min(len(a_lines), len(e_lines)),
        )
        return Comparison(False, mismatches, f'line {first + 1}')


class ToleranceComparator:
    mode = 'float'

    def __init__(self, abs_eps: float = 1e-6, rel_eps: float | None = None):
        self.abs_eps = abs_eps
        self.rel_eps = abs_eps if rel_eps is None else rel_eps

    def _token_matches(self, actual: bytes, expected: bytes) -> bool:
        if actual == expected:
            return True
        try:
            a = float(actual)
            e = float(expected)
        except ValueError:
            return False
        if math.isnan(a) or math.isnan(e):
            return False
        if math.isinf(a) or math.isinf(e):
            return a == e
        diff = abs(a - e)
        return diff <= self.abs_eps or diff <= self.rel_eps * abs(e)

    def compare(self, actual: bytes, expected: bytes) -> Comparison:
        a_tokens = actual.split()
        e_tokens = expected.split()
        mismatches = abs(len(a_tokens) - len(e_tokens))
        first = None
        for i, (a, e) in enumerate(zip(a_tokens, e_tokens)):
            if not self._token_matches(a, e):
                mismatches += 1
                if first is None:
                    first = f'token {i + 1}: {a[:40]!r} != {e[:40]!r}'
        if first is None and mismatches:
            first = f'expected {len(e_tokens)} tokens, got {len(a_tokens)}'
        return Comparison(mismatches == 0, mismatches, first)


class AnyComparator:
    mode = 'any'

    def compare(self, actual: bytes, expected: bytes) -> Comparison:
        return Comparison(True)


def make_comparator(mode: str | None = None, abs_eps: float | None = None,
                    rel_eps: float | None = None, hint: str | None = None):
    """Build a comparator from an explicit mode, falling back to a test-case hint.

    ``hint`` uses the form produced by the scrapers: ``'float:1e-06'`` or ``'any'``.
    """
    if mode is None and hint:
        if hint == 'any':
            mode = 'any'
        else:
            m = _HINT_RE.match(hint)
            if m:
                mode = 'float'
                if abs_eps is None:
                    abs_eps = float(m.group('eps'))
    mode = mode or 'exact'

    if mode == 'exact':
        return ExactComparator()
    if mode == 'float':
        return ToleranceComparator(abs_eps if abs_eps is not None else 1e-6, rel_eps)
    if mode == 'any':
        return AnyComparator()
    raise ValueError(f"Unknown comparator mode: {mode}")
