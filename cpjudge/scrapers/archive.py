"""Pair input/output entries of a judge test-data zip into TestCases."""
from __future__ import annotations

import io
import logging
import re
import zipfile
from dataclasses import dataclass

from cpjudge.errors import UnrecognizedLayout
from .common import TestCase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ZipEntries:
    in_entry: re.Pattern
    out_entry: re.Pattern
    crlf_to_lf: bool = True
    match_group: int = 1


YUKICODER_ENTRIES = ZipEntries(
    in_entry=re.compile(r'\Atest_in/([a-zA-Z0-9_\-.]+)\.txt\Z'),
    out_entry=re.compile(r'\Atest_out/([a-zA-Z0-9_\-.]+)\.txt\Z'),
)


def _sort_key(name: str):
    # Numeric names first in numeric order, then the rest in dictionary order
    return (0, int(name), '') if name.isdigit() else (1, 0, name)


def extract_test_cases(data: bytes, entries: ZipEntries = YUKICODER_ENTRIES,
                       problem_id: str | None = None) -> list[TestCase]:
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise UnrecognizedLayout(
            'test case archive is not a zip file',
            snippet=data[:80].decode('utf-8', errors='replace'),
            problem_id=problem_id,
        ) from e

    inputs = {}
    outputs = {}
    with archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            m_in = entries.in_entry.match(info.filename)
            m_out = entries.out_entry.match(info.filename)
            if not (m_in or m_out):
                continue
            content = archive.read(info)
            if entries.crlf_to_lf:
                content = content.replace(b'\r\n', b'\n')
            if m_in:
                inputs[m_in.group(entries.match_group)] = content
            else:
                outputs[m_out.group(entries.match_group)] = content

    unpaired = set(inputs) ^ set(outputs)
    if unpaired:
        logger.warning(f"Dropping unpaired archive entries for {problem_id}: {sorted(unpaired)}")

    names = sorted(set(inputs) & set(outputs), key=_sort_key)
    return [
        TestCase(
            name=name,
            input=inputs[name].rstrip(b'\n'),
            expected=outputs[name].rstrip(b'\n'),
        )
        for name in names
    ]
