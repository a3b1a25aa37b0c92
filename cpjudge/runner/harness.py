"""Concurrent execution of a candidate program against a problem's test cases.

Test cases are queued in order on a ``ThreadPoolExecutor`` whose size is
``min(parallelism, cpu_count)``. Each worker spawns the program with the test
input on stdin and writes its outcome into the slot at the test's index, so
the report is in test order whatever order the workers finish in.
"""
from __future__ import annotations

import logging
import os
import shlex
import shutil
import signal
import subprocess
import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum

import psutil

from cpjudge.errors import SpawnFailure
from cpjudge.scrapers.common import Problem, TestCase
from .comparator import make_comparator

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.01
READ_CHUNK = 64 * 1024
DEFAULT_OUTPUT_LIMIT = 16 * 1024 * 1024


class ExecutionVerdict(str, Enum):
    ACCEPTED = 'AC'
    WRONG_ANSWER = 'WA'
    RUNTIME_ERROR = 'RE'
    TIME_LIMIT_EXCEEDED = 'TLE'
    MEMORY_LIMIT_EXCEEDED = 'MLE'
    COMPILE_ERROR = 'CE'
    SKIPPED = 'SKIPPED'


@dataclass(frozen=True)
class Limits:
    time_limit: float = 2.0                 # seconds, wall clock
    memory_limit_bytes: int | None = None
    output_limit: int = DEFAULT_OUTPUT_LIMIT
    # Non-zero exit with otherwise correct output counts as a wrong answer
    exit_code_sensitive: bool = False
    # Also cap the address space with RLIMIT_AS (POSIX only)
    enforce_address_space: bool = False

    @classmethod
    def for_problem(cls, problem: Problem, **overrides) -> 'Limits':
        values = {}
        if problem.time_limit_ms:
            values['time_limit'] = problem.time_limit_ms / 1000
        if problem.memory_limit_bytes:
            values['memory_limit_bytes'] = problem.memory_limit_bytes
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True)
class ExecutionOutcome:
    test_case: TestCase
    index: int
    verdict: ExecutionVerdict
    exit_code: int | None = None
    stdout: bytes = b''
    stderr: bytes = b''
    elapsed: float = 0.0
    peak_memory_bytes: int | None = None
    truncated: bool = False
    detail: str | None = None

    @property
    def name(self) -> str:
        return self.test_case.name


@dataclass
class RunReport:
    outcomes: list[ExecutionOutcome] = field(default_factory=list)
    not_reached: list[str] = field(default_factory=list)
    cancelled: bool = False
    compile_output: bytes = b''

    @property
    def all_accepted(self) -> bool:
        return (
            bool(self.outcomes)
            and not self.not_reached
            and all(o.verdict is ExecutionVerdict.ACCEPTED for o in self.outcomes)
        )

    def counts(self) -> Counter:
        return Counter(o.verdict for o in self.outcomes)


class _Capture:
    """Collects a pipe up to ``limit`` bytes and drains (discards) the rest."""

    def __init__(self, stream, limit: int):
        self.stream = stream
        self.limit = limit
        self.chunks = []
        self.size = 0
        self.truncated = False
        self.thread = threading.Thread(target=self._drain, daemon=True)
        self.thread.start()

    def _drain(self):
        try:
            while True:
                chunk = self.stream.read1(READ_CHUNK)
                if not chunk:
                    break
                room = self.limit - self.size
                if room <= 0:
                    self.truncated = True
                    continue
                if len(chunk) > room:
                    chunk = chunk[:room]
                    self.truncated = True
                self.chunks.append(chunk)
                self.size += len(chunk)
        except (OSError, ValueError):
            pass
        finally:
            self.stream.close()

    def value(self, timeout: float = 1.0) -> bytes:
        self.thread.join(timeout)
        return b''.join(self.chunks)


def _feed(stream, data: bytes):
    try:
        if data:
            stream.write(data)
    except (BrokenPipeError, OSError):
        # The program exited without reading all of its input
        pass
    finally:
        try:
            stream.close()
        except OSError:
            pass


def _kill_tree(proc: subprocess.Popen):
    if proc.poll() is not None:
        return
    if os.name == 'posix':
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except (ProcessLookupError, PermissionError):
            pass
    try:
        proc.kill()
    except OSError:
        pass


def _rlimit_as(limit_bytes: int):
    def apply():
        import resource
        resource.setrlimit(resource.RLIMIT_AS, (limit_bytes, limit_bytes))
    return apply


def split_command(command) -> list[str]:
    if isinstance(command, str):
        return shlex.split(command, posix=os.name == 'posix')
    return [str(part) for part in command]


class TestHarness:
    """Runs one command against many test cases with bounded parallelism."""

    __test__ = False

    def __init__(self, parallelism: int | None = None, output_limit: int = DEFAULT_OUTPUT_LIMIT,
                 compile_timeout: float = 60.0, cancel_event: threading.Event | None = None):
        self.parallelism = parallelism or os.cpu_count() or 1
        self.output_limit = output_limit
        self.compile_timeout = compile_timeout
        self.cancel_event = cancel_event or threading.Event()

    @classmethod
    def from_config(cls, config, **kwargs) -> 'TestHarness':
        kwargs.setdefault('parallelism', config.RUNNER_PARALLELISM)
        kwargs.setdefault('output_limit', config.RUNNER_OUTPUT_LIMIT)
        kwargs.setdefault('compile_timeout', config.RUNNER_COMPILE_TIMEOUT)
        return cls(**kwargs)

    def worker_count(self, parallelism: int | None, test_count: int) -> int:
        requested = parallelism or self.parallelism
        return max(1, min(requested, os.cpu_count() or 1, test_count))

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, command, test_cases: list[TestCase], limits: Limits | None = None,
            parallelism: int | None = None, comparator=None, compile_command=None,
            cwd: str | None = None, env: dict | None = None, problem_id: str | None = None,
            fail_fast: bool = False) -> RunReport:
        """Run ``command`` on every test case and return outcomes in test order.

        Raises SpawnFailure when the program cannot be started at all; the
        exception carries the outcomes finished so far and the names of the
        tests that never ran. Timeouts, crashes and wrong answers are
        recorded as outcomes.
        """
        limits = limits or Limits(output_limit=self.output_limit)
        argv = split_command(command)
        test_cases = list(test_cases)
        report = RunReport()

        if compile_command:
            ok, output = self.compile(compile_command, cwd=cwd, env=env, problem_id=problem_id)
            report.compile_output = output
            if not ok:
                report.outcomes = [
                    ExecutionOutcome(
                        test_case=case, index=i, verdict=ExecutionVerdict.COMPILE_ERROR,
                        stderr=output, detail='compilation failed',
                    )
                    for i, case in enumerate(test_cases)
                ]
                return report

        if not test_cases:
            return report

        self._check_executable(argv, cwd, test_cases, problem_id)

        slots = [None] * len(test_cases)
        fatal = threading.Event()
        stop = threading.Event()
        spawn_error = None
        workers = self.worker_count(parallelism, len(test_cases))
        logger.info(f"Running {len(test_cases)} test(s) with {workers} worker(s): {' '.join(argv)}")

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='cpjudge-run') as executor:
            futures = {
                executor.submit(
                    self._run_slot, slots, index, case, argv, limits, comparator,
                    cwd, env, fatal, stop, fail_fast,
                ): index
                for index, case in enumerate(test_cases)
            }
            for future in as_completed(futures):
                try:
                    future.result()
                except SpawnFailure as e:
                    if spawn_error is None:
                        spawn_error = e
                    fatal.set()
                    for pending in futures:
                        pending.cancel()

        report.cancelled = self.cancel_event.is_set()
        report.outcomes = [slot for slot in slots if slot is not None]
        report.not_reached = [case.name for case, slot in zip(test_cases, slots) if slot is None]

        if spawn_error is not None:
            raise SpawnFailure(
                spawn_error.message,
                problem_id=problem_id,
                outcomes=report.outcomes,
                not_reached=report.not_reached,
            ) from spawn_error.__cause__

        counts = report.counts()
        logger.info(
            'Finished: ' + ', '.join(f'{v.value}={n}' for v, n in sorted(counts.items()))
            + (f', not reached={len(report.not_reached)}' if report.not_reached else '')
        )
        return report

    def run_problem(self, command, problem: Problem, **kwargs) -> RunReport:
        kwargs.setdefault('limits', Limits.for_problem(problem, output_limit=self.output_limit))
        kwargs.setdefault('problem_id', problem.problem_id)
        return self.run(command, problem.test_cases, **kwargs)

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def compile(self, command, cwd=None, env=None, problem_id=None) -> tuple[bool, bytes]:
        argv = split_command(command)
        logger.info(f"Compiling: {' '.join(argv)}")
        try:
            result = subprocess.run(
                argv, cwd=cwd, env=env,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                timeout=self.compile_timeout,
            )
        except OSError as e:
            raise SpawnFailure(f"cannot start compiler {argv[0]!r}: {e}", problem_id=problem_id) from e
        except subprocess.TimeoutExpired as e:
            logger.warning(f"Compilation timed out after {self.compile_timeout}s")
            return False, (e.stderr or b'')[:self.output_limit]

        output = (result.stderr or b'') + (result.stdout or b'')
        if result.returncode != 0:
            logger.warning(f"Compilation failed with exit code {result.returncode}")
            return False, output[:self.output_limit]
        return True, output[:self.output_limit]

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def _check_executable(self, argv, cwd, test_cases, problem_id):
        program = argv[0] if argv else ''
        if os.sep in program or (os.altsep and os.altsep in program):
            path = program if os.path.isabs(program) else os.path.join(cwd or os.getcwd(), program)
            found = os.path.isfile(path) and os.access(path, os.X_OK)
        else:
            found = bool(program) and shutil.which(program) is not None
        if not found:
            raise SpawnFailure(
                f"executable not found: {program!r}",
                problem_id=problem_id,
                not_reached=[case.name for case in test_cases],
            )

    def _run_slot(self, slots, index, case, argv, limits, comparator, cwd, env,
                  fatal, stop, fail_fast):
        if fatal.is_set() or self.cancel_event.is_set():
            return
        if stop.is_set():
            slots[index] = ExecutionOutcome(
                test_case=case, index=index, verdict=ExecutionVerdict.SKIPPED,
                detail='skipped after an earlier failure',
            )
            return
        outcome = self._run_one(index, case, argv, limits, comparator, cwd, env)
        if outcome is None:
            return
        slots[index] = outcome
        if fail_fast and outcome.verdict is not ExecutionVerdict.ACCEPTED:
            stop.set()

    def _run_one(self, index: int, case: TestCase, argv, limits: Limits, comparator,
                 cwd, env) -> ExecutionOutcome | None:
        """Run one test; None when cancelled before it finished."""
        preexec = None
        if limits.enforce_address_space and limits.memory_limit_bytes and os.name == 'posix':
            preexec = _rlimit_as(limits.memory_limit_bytes)

        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
                env=env,
                start_new_session=os.name == 'posix',
                preexec_fn=preexec,
            )
        except OSError as e:
            raise SpawnFailure(f"cannot start {argv[0]!r}: {e}") from e

        stdout = _Capture(proc.stdout, limits.output_limit)
        stderr = _Capture(proc.stderr, limits.output_limit)
        data = case.input + b'\n' if case.input else b''
        feeder = threading.Thread(target=_feed, args=(proc.stdin, data), daemon=True)
        feeder.start()

        try:
            ps_proc = psutil.Process(proc.pid)
        except psutil.NoSuchProcess:
            ps_proc = None

        deadline = started + limits.time_limit
        timed_out = False
        killed_for_memory = False
        cancelled = False
        peak_rss = 0
        while proc.poll() is None:
            if self.cancel_event.is_set():
                cancelled = True
                _kill_tree(proc)
                break
            if time.monotonic() >= deadline:
                timed_out = True
                _kill_tree(proc)
                break
            if ps_proc is not None:
                try:
                    peak_rss = max(peak_rss, ps_proc.memory_info().rss)
                except (psutil.NoSuchProcess, psutil.AccessDenied):
                    ps_proc = None
                if limits.memory_limit_bytes and peak_rss > limits.memory_limit_bytes:
                    killed_for_memory = True
                    _kill_tree(proc)
                    break
            time.sleep(POLL_INTERVAL)

        proc.wait()
        elapsed = time.monotonic() - started
        feeder.join(1.0)
        out = stdout.value()
        err = stderr.value()

        if cancelled:
            logger.debug(f"{case.name}: cancelled")
            return None

        verdict, detail = self._classify(
            proc.returncode, out, stdout.truncated, case, limits, comparator,
            timed_out, killed_for_memory,
        )
        logger.debug(f"{case.name}: {verdict.value} in {elapsed:.3f}s")
        return ExecutionOutcome(
            test_case=case,
            index=index,
            verdict=verdict,
            exit_code=proc.returncode,
            stdout=out,
            stderr=err,
            elapsed=elapsed,
            peak_memory_bytes=peak_rss or None,
            truncated=stdout.truncated or stderr.truncated,
            detail=detail,
        )

    def _classify(self, returncode, out, truncated, case, limits, comparator,
                  timed_out, killed_for_memory):
        if timed_out:
            return ExecutionVerdict.TIME_LIMIT_EXCEEDED, f'exceeded {limits.time_limit:g}s'
        if killed_for_memory:
            return ExecutionVerdict.MEMORY_LIMIT_EXCEEDED, 'exceeded the memory limit'

        if returncode != 0:
            signalled = returncode < 0
            if signalled or not limits.exit_code_sensitive:
                return ExecutionVerdict.RUNTIME_ERROR, f'exit code {returncode}'
            return ExecutionVerdict.WRONG_ANSWER, f'exit code {returncode}'

        if truncated:
            return ExecutionVerdict.WRONG_ANSWER, 'output limit exceeded'

        comparator = comparator or make_comparator(hint=case.comparator_hint)
        result = comparator.compare(out, case.expected)
        if result.accepted:
            return ExecutionVerdict.ACCEPTED, None
        return ExecutionVerdict.WRONG_ANSWER, result.first_mismatch
