# Copyright (c) Syntropy Systems
"""Process monitor: runs one command under a timeout and measures its output."""
from __future__ import annotations

import contextlib
import ctypes
import logging
import math
import os
import re
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import IO, TYPE_CHECKING, Protocol

from flagsweep.models.result import ExecutionOutcome, RunMetrics

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

PERF_MARKER = "llama_perf_context_print:"
DEFAULT_TPS_PATTERN = (
    re.escape(PERF_MARKER)
    + r".*?(?<![-+\d.])(?P<tps>\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)\s+tokens per second"
)
TPS_GROUP = "tps"

# Time allowed for the reader to drain after the process group is gone
READER_JOIN_TIMEOUT = 5.0


def compile_tps_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a tokens-per-second pattern, requiring a named ``tps`` group."""
    try:
        compiled = re.compile(pattern)
    except re.error as e:
        msg = f"Invalid tps_pattern: {e}"
        raise ValueError(msg) from e
    if TPS_GROUP not in compiled.groupindex:
        msg = f"tps_pattern must define a named group '{TPS_GROUP}'"
        raise ValueError(msg)
    return compiled


def count_words(line: str) -> int:
    """Count whitespace-separated, non-empty tokens in a line."""
    return len(line.split())


def setup_pdeathsig() -> None:
    """Set PDEATHSIG so child dies when parent dies.

    This prevents orphan processes when the harness crashes.
    Only works on Linux.
    """
    if sys.platform != "linux":
        return
    try:
        libc = ctypes.CDLL("libc.so.6", use_errno=True)
        pr_set_pdeathsig = 1
        libc.prctl(pr_set_pdeathsig, signal.SIGKILL)
    except (AttributeError, OSError):
        # Can't set PDEATHSIG, continue without it
        return


class MonitorSink(Protocol):
    """Receives observations from a monitored run."""

    def on_start(self, command: Sequence[str], timeout: float) -> None: ...

    def on_output(self, line: str) -> None: ...

    def on_metric(self, words_per_second: float, total_words: int, elapsed: float) -> None: ...

    def on_cleanup(self, pid: int) -> None: ...

    def on_error(self, error: BaseException) -> None: ...


class NullSink:
    """Sink that discards everything."""

    def on_start(self, command: Sequence[str], timeout: float) -> None:
        pass

    def on_output(self, line: str) -> None:
        pass

    def on_metric(self, words_per_second: float, total_words: int, elapsed: float) -> None:
        pass

    def on_cleanup(self, pid: int) -> None:
        pass

    def on_error(self, error: BaseException) -> None:
        pass


class RunState(str, Enum):
    """Lifecycle of a monitored process."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"

    @property
    def outcome(self) -> ExecutionOutcome | None:
        """Outcome for a terminal state, None while not finished."""
        return _STATE_OUTCOMES.get(self)


_STATE_OUTCOMES = {
    RunState.COMPLETED: ExecutionOutcome.SUCCESS,
    RunState.TIMED_OUT: ExecutionOutcome.TIMEOUT,
    RunState.FAILED: ExecutionOutcome.FAILURE,
}


@dataclass
class OutputStats:
    """Counters shared between the reader, the reporter and the caller.

    Every access goes through ``lock``.
    """

    started_at: float = field(default_factory=time.monotonic)
    total_words: int = 0
    words_per_second: float = 0.0
    tokens_per_second: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def add_line(self, words: int, tps: float | None) -> None:
        with self.lock:
            self.total_words += words
            if tps is not None:
                self.tokens_per_second = tps

    def refresh_rate(self) -> tuple[float, int, float]:
        """Recompute words/sec from the counter and elapsed time."""
        with self.lock:
            elapsed = time.monotonic() - self.started_at
            words = self.total_words
            self.words_per_second = words / elapsed if elapsed > 0 else 0.0
            return self.words_per_second, words, elapsed

    def snapshot(self) -> RunMetrics:
        with self.lock:
            return RunMetrics(
                words_per_second=self.words_per_second,
                tokens_per_second=self.tokens_per_second,
            )


class MonitoredProcess:
    """One external process, observed from spawn to exit.

    Features:
    - Uses start_new_session=True so the whole process group can be killed
    - Sets PDEATHSIG on Linux to prevent orphans
    - Merges stderr into stdout and reads it line by line on a thread
    - Reports words/sec on a second thread at a fixed interval
    - Hard-kills the process group when the deadline passes
    """

    command_argv: list[str]
    timeout: float
    report_interval: float
    stats: OutputStats
    _process: subprocess.Popen[str] | None
    _exit_code: int | None
    _state: RunState
    _error: BaseException | None
    _stop: threading.Event
    _killed: bool
    _threads: list[threading.Thread]

    def __init__(
        self,
        command_argv: Sequence[str],
        timeout: float,
        report_interval: float,
        sink: MonitorSink | None = None,
        tps_pattern: re.Pattern[str] | None = None,
    ) -> None:
        self.command_argv = list(command_argv)
        self.timeout = timeout
        self.report_interval = report_interval
        self.sink: MonitorSink = sink or NullSink()
        self.tps_pattern = tps_pattern or compile_tps_pattern(DEFAULT_TPS_PATTERN)
        self.stats = OutputStats()

        self._process = None
        self._exit_code = None
        self._state = RunState.NOT_STARTED
        self._error = None
        self._stop = threading.Event()
        self._killed = False
        self._threads = []

    def run(self) -> RunState:
        """Run the process to a terminal state. Never raises for run errors."""
        if self._state is not RunState.NOT_STARTED:
            msg = f"Process already ran (state: {self._state.value})"
            raise RuntimeError(msg)

        self.sink.on_start(self.command_argv, self.timeout)
        deadline = time.monotonic() + self.timeout

        try:
            self._start()
            finished = self._wait(deadline)
            if self._error is not None:
                raise self._error
            if finished:
                self._state = RunState.COMPLETED
                # Rate over the whole run
                _ = self.stats.refresh_rate()
            else:
                logger.info("Timed out after %.1fs: %s", self.timeout, self.command_argv[0])
                self._state = RunState.TIMED_OUT
        except Exception as e:
            logger.exception("Run failed: %s", " ".join(self.command_argv))
            self._state = RunState.FAILED
            self.sink.on_error(e)
        finally:
            self._cleanup()

        return self._state

    def _start(self) -> None:
        self.stats = OutputStats()
        self._process = subprocess.Popen(  # noqa: S603
            self.command_argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            text=True,
            encoding="utf-8",
            errors="replace",
            start_new_session=True,  # Creates new process group
            preexec_fn=setup_pdeathsig if sys.platform == "linux" else None,  # noqa: PLW1509
        )
        self._state = RunState.RUNNING
        logger.debug("Spawned pid=%s: %s", self._process.pid, self.command_argv)

        stdout = self._process.stdout
        if stdout is None:
            msg = "Process started without an output pipe"
            raise RuntimeError(msg)

        self._threads = [
            threading.Thread(
                target=self._read_output, args=(stdout,), name="flagsweep-reader", daemon=True
            ),
            threading.Thread(
                target=self._report_metrics, name="flagsweep-reporter", daemon=True
            ),
        ]
        for thread in self._threads:
            thread.start()

    def _wait(self, deadline: float) -> bool:
        """Wait for output EOF and process exit. Returns False on timeout."""
        reader = self._threads[0]
        reader.join(timeout=max(0.0, deadline - time.monotonic()))
        if reader.is_alive():
            return False
        if self._error is not None:
            return True

        if self._process is None:
            msg = "Process was not started"
            raise RuntimeError(msg)
        try:
            self._exit_code = self._process.wait(
                timeout=max(0.0, deadline - time.monotonic())
            )
        except subprocess.TimeoutExpired:
            return False
        logger.debug("pid=%s exited with code %s", self._process.pid, self._exit_code)
        return True

    def _read_output(self, stream: IO[str]) -> None:
        """Consume the merged output stream until EOF."""
        try:
            with stream:
                for raw_line in stream:
                    line = raw_line.rstrip("\r\n")
                    self.sink.on_output(line)
                    self.stats.add_line(count_words(line), self.parse_tps(line))
        except Exception as e:  # noqa: BLE001
            if not self._killed:
                self._error = e
        finally:
            self._stop.set()

    def parse_tps(self, line: str) -> float | None:
        """Extract a tokens/sec figure from a line, if it reports one."""
        match = self.tps_pattern.search(line)
        if match is None:
            return None
        value = match.group(TPS_GROUP)
        try:
            tps = float(value)
        except (TypeError, ValueError):
            logger.debug("Ignoring non-numeric tps capture %r", value)
            return None
        if not math.isfinite(tps) or tps < 0:
            logger.debug("Ignoring out-of-range tps capture %r", value)
            return None
        return tps

    def _report_metrics(self) -> None:
        """Report words/sec every interval while the process is alive."""
        while not self._stop.wait(self.report_interval):
            if not self.is_running:
                break
            wps, words, elapsed = self.stats.refresh_rate()
            self.sink.on_metric(wps, words, elapsed)

    def kill(self) -> None:
        """SIGKILL the process group. Runs at most once per process.

        The group is signalled even when its leader has already exited,
        since children it started may still hold the output pipe.
        """
        if self._process is None or self._killed:
            return
        self._killed = True

        self.sink.on_cleanup(self._process.pid)
        # start_new_session makes the leader's pid the pgid
        try:
            os.killpg(self._process.pid, signal.SIGKILL)
        except ProcessLookupError:
            logger.debug("Process group %s already gone", self._process.pid)
        except OSError:
            with contextlib.suppress(OSError):
                self._process.kill()

        with contextlib.suppress(subprocess.TimeoutExpired):
            self._exit_code = self._process.wait(timeout=READER_JOIN_TIMEOUT)

    def _cleanup(self) -> None:
        """Stop both threads and make sure nothing is left running."""
        self._stop.set()
        if self._state is not RunState.COMPLETED:
            self.kill()
        elif self._process is not None and self._exit_code is None:
            self._exit_code = self._process.poll()

        for thread in self._threads:
            thread.join(timeout=READER_JOIN_TIMEOUT)
            if thread.is_alive():
                logger.warning("%s did not stop after process cleanup", thread.name)

        # The reader closes the stream itself; closing under it would block
        if self._threads and self._threads[0].is_alive():
            return
        if self._process is not None and self._process.stdout is not None:
            with contextlib.suppress(OSError, ValueError):
                self._process.stdout.close()

    @property
    def state(self) -> RunState:
        """Current lifecycle state."""
        return self._state

    @property
    def metrics(self) -> RunMetrics:
        """Latest observed metrics."""
        return self.stats.snapshot()

    @property
    def pid(self) -> int | None:
        """Get the process ID."""
        if self._process is None:
            return None
        return self._process.pid

    @property
    def exit_code(self) -> int | None:
        """Get the exit code if finished."""
        return self._exit_code

    @property
    def is_running(self) -> bool:
        """Check if the process is still running."""
        if self._process is None:
            return False
        return self._process.poll() is None


class ProcessMonitor:
    """Executes commands one at a time and classifies how each run ended."""

    def __init__(
        self,
        sink: MonitorSink | None = None,
        tps_pattern: str = DEFAULT_TPS_PATTERN,
    ) -> None:
        self.sink: MonitorSink = sink or NullSink()
        self.tps_pattern = compile_tps_pattern(tps_pattern)

    def execute(
        self,
        command: Sequence[str],
        timeout: float = 300.0,
        report_interval: float = 10.0,
    ) -> tuple[ExecutionOutcome, RunMetrics]:
        """Run ``command`` bounded by ``timeout`` seconds.

        Returns the outcome and the last observed metrics. Spawn and stream
        errors are reported to the sink and returned as FAILURE; the process
        is never left running when this returns.

        Raises:
            ValueError: If timeout or report_interval is not positive.
        """
        if timeout <= 0:
            msg = f"timeout must be positive, got {timeout}"
            raise ValueError(msg)
        if report_interval <= 0:
            msg = f"report_interval must be positive, got {report_interval}"
            raise ValueError(msg)

        process = MonitoredProcess(
            command,
            timeout=timeout,
            report_interval=report_interval,
            sink=self.sink,
            tps_pattern=self.tps_pattern,
        )
        state = process.run()
        outcome = state.outcome
        if outcome is None:
            msg = f"Run ended in non-terminal state {state.value}"
            raise RuntimeError(msg)
        return outcome, process.metrics
