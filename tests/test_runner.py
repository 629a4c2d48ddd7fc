# Copyright (c) Syntropy Systems
"""Tests for the process monitor."""

from __future__ import annotations

import sys
import time
from pathlib import Path

import pytest

from conftest import RecordingSink, python_command
from flagsweep.models.result import ExecutionOutcome
from flagsweep.runner import (
    DEFAULT_TPS_PATTERN,
    MonitoredProcess,
    ProcessMonitor,
    RunState,
    compile_tps_pattern,
    count_words,
)

PERF_LINE = (
    "llama_perf_context_print:        eval time =    1020.00 ms /   127 runs   "
    "(    8.03 ms per token,   {tps} tokens per second)"
)


class TestTpsPattern:
    """Tests for tokens/sec extraction."""

    def test_extracts_numeric_group(self) -> None:
        """Test the whole number is captured, not its last character."""
        monitor = MonitoredProcess(["true"], timeout=1, report_interval=1)

        assert monitor.parse_tps(PERF_LINE.format(tps="124.51")) == 124.51

    def test_scenario_value(self) -> None:
        """Test a short marker line reporting 12.5 tokens per second."""
        monitor = MonitoredProcess(["true"], timeout=1, report_interval=1)

        assert monitor.parse_tps("llama_perf_context_print: 12.5 tokens per second") == 12.5

    def test_requires_marker(self) -> None:
        """Test lines without the marker are ignored."""
        monitor = MonitoredProcess(["true"], timeout=1, report_interval=1)

        assert monitor.parse_tps("we did 12.5 tokens per second") is None
        assert monitor.parse_tps("llama_perf_context_print: load time = 10 ms") is None

    def test_negative_value_ignored(self) -> None:
        """Test a signed number is not read as a throughput."""
        monitor = MonitoredProcess(["true"], timeout=1, report_interval=1)

        assert monitor.parse_tps("llama_perf_context_print: -3.5 tokens per second") is None

    def test_non_finite_custom_capture_ignored(self) -> None:
        """Test nan and inf captured by a custom pattern are dropped."""
        monitor = MonitoredProcess(
            ["true"],
            timeout=1,
            report_interval=1,
            tps_pattern=compile_tps_pattern(r"rate=(?P<tps>\S+)"),
        )

        assert monitor.parse_tps("rate=nan") is None
        assert monitor.parse_tps("rate=inf") is None
        assert monitor.parse_tps("rate=-2") is None
        assert monitor.parse_tps("rate=7.25") == 7.25

    def test_custom_pattern_requires_tps_group(self) -> None:
        """Test patterns without a 'tps' group are rejected."""
        with pytest.raises(ValueError, match="named group"):
            _ = compile_tps_pattern(r"(\d+) tok/s")

    def test_invalid_regex(self) -> None:
        """Test a broken regex is a ValueError."""
        with pytest.raises(ValueError, match="Invalid tps_pattern"):
            _ = compile_tps_pattern("(?P<tps>")

    def test_default_pattern_compiles(self) -> None:
        """Test the default pattern defines 'tps'."""
        assert "tps" in compile_tps_pattern(DEFAULT_TPS_PATTERN).groupindex


class TestCountWords:
    """Tests for word counting."""

    def test_counts_non_empty_tokens(self) -> None:
        """Test runs of whitespace do not create empty words."""
        assert count_words("  alpha   beta\tgamma  ") == 3

    def test_blank_line(self) -> None:
        """Test blank lines count zero."""
        assert count_words("   ") == 0
        assert count_words("") == 0


class TestRunState:
    """Tests for state to outcome mapping."""

    def test_terminal_states_map_to_outcomes(self) -> None:
        """Test each terminal state has exactly one outcome."""
        assert RunState.COMPLETED.outcome is ExecutionOutcome.SUCCESS
        assert RunState.TIMED_OUT.outcome is ExecutionOutcome.TIMEOUT
        assert RunState.FAILED.outcome is ExecutionOutcome.FAILURE

    def test_non_terminal_states_have_no_outcome(self) -> None:
        """Test unfinished states are not outcomes."""
        assert RunState.NOT_STARTED.outcome is None
        assert RunState.RUNNING.outcome is None


class TestProcessMonitorCompletion:
    """Tests for processes that exit on their own."""

    def test_silent_process_succeeds_with_zero_metrics(self, sink: RecordingSink) -> None:
        """Test no output and exit code 0 gives SUCCESS with zero metrics."""
        monitor = ProcessMonitor(sink=sink)

        outcome, metrics = monitor.execute(python_command("pass"), timeout=10, report_interval=1)

        assert outcome is ExecutionOutcome.SUCCESS
        assert metrics.words_per_second == 0.0
        assert metrics.tokens_per_second == 0.0
        assert sink.lines == []
        assert sink.errors == []

    def test_nonzero_exit_is_still_success(self, sink: RecordingSink) -> None:
        """Test the exit code does not change the outcome."""
        process = MonitoredProcess(
            python_command("import sys; sys.exit(42)"),
            timeout=10,
            report_interval=1,
            sink=sink,
        )

        state = process.run()

        assert state is RunState.COMPLETED
        assert process.exit_code == 42
        assert not process.is_running

    def test_tps_extracted_from_output(self, sink: RecordingSink) -> None:
        """Test a marker line sets tokens per second."""
        script = "print('llama_perf_context_print: eval 12.5 tokens per second')"
        monitor = ProcessMonitor(sink=sink)

        outcome, metrics = monitor.execute(python_command(script), timeout=10, report_interval=1)

        assert outcome is ExecutionOutcome.SUCCESS
        assert metrics.tokens_per_second == 12.5

    def test_negative_tps_line_does_not_break_run(self, sink: RecordingSink) -> None:
        """Test a negative figure leaves the previous tps in place."""
        script = (
            "print('llama_perf_context_print: 12.5 tokens per second'); "
            "print('llama_perf_context_print: -3.5 tokens per second')"
        )
        monitor = ProcessMonitor(sink=sink)

        outcome, metrics = monitor.execute(python_command(script), timeout=10, report_interval=1)

        assert outcome is ExecutionOutcome.SUCCESS
        assert metrics.tokens_per_second == 12.5
        assert sink.errors == []

    def test_last_tps_match_wins(self, sink: RecordingSink) -> None:
        """Test a later marker line overwrites an earlier one."""
        script = (
            f"print({PERF_LINE.format(tps='500.00')!r}); "
            "print('unrelated 99.0 tokens per second'); "
            f"print({PERF_LINE.format(tps='102.88')!r})"
        )
        monitor = ProcessMonitor(sink=sink)

        _, metrics = monitor.execute(python_command(script), timeout=10, report_interval=1)

        assert metrics.tokens_per_second == 102.88

    def test_output_echoed_in_order(self, sink: RecordingSink) -> None:
        """Test every line reaches the sink in emission order."""
        script = "for i in range(50): print(f'line {i}')"
        monitor = ProcessMonitor(sink=sink)

        _ = monitor.execute(python_command(script), timeout=10, report_interval=1)

        assert sink.lines == [f"line {i}" for i in range(50)]

    def test_stderr_is_merged(self, sink: RecordingSink) -> None:
        """Test stderr lines are observed like stdout."""
        script = "import sys; sys.stderr.write('error output here\\n')"
        monitor = ProcessMonitor(sink=sink)

        outcome, metrics = monitor.execute(python_command(script), timeout=10, report_interval=1)

        assert outcome is ExecutionOutcome.SUCCESS
        assert "error output here" in sink.lines
        assert metrics.words_per_second > 0

    def test_words_per_second_positive_when_words_seen(self, sink: RecordingSink) -> None:
        """Test a completed run with words reports a positive rate."""
        script = "print('one two three four five')"
        process = MonitoredProcess(
            python_command(script), timeout=10, report_interval=5, sink=sink
        )

        _ = process.run()

        assert process.stats.total_words == 5
        assert process.metrics.words_per_second > 0

    def test_reporter_emits_periodic_metrics(self, sink: RecordingSink) -> None:
        """Test words/sec is reported on the interval while the process runs."""
        script = (
            "import time\n"
            "for i in range(8):\n"
            "    print('alpha beta gamma')\n"
            "    time.sleep(0.1)\n"
        )
        monitor = ProcessMonitor(sink=sink)

        outcome, _ = monitor.execute(python_command(script), timeout=10, report_interval=0.2)

        assert outcome is ExecutionOutcome.SUCCESS
        assert sink.metrics
        for wps, words, elapsed in sink.metrics:
            assert wps >= 0
            assert words >= 0
            assert elapsed > 0

    def test_start_reported(self, sink: RecordingSink) -> None:
        """Test the sink sees the command and timeout."""
        command = python_command("pass")
        monitor = ProcessMonitor(sink=sink)

        _ = monitor.execute(command, timeout=7, report_interval=1)

        assert sink.starts == [(command, 7)]

    def test_run_twice_rejected(self) -> None:
        """Test a monitored process only runs once."""
        process = MonitoredProcess(python_command("pass"), timeout=10, report_interval=1)
        _ = process.run()

        with pytest.raises(RuntimeError, match="already ran"):
            _ = process.run()


class TestProcessMonitorTimeout:
    """Tests for runs cut short by the timeout."""

    def test_hung_process_times_out_and_is_killed(self, sink: RecordingSink) -> None:
        """Test a sleeping process is TIMED_OUT and not running afterwards."""
        process = MonitoredProcess(
            python_command("import time; time.sleep(60)"),
            timeout=0.5,
            report_interval=0.1,
            sink=sink,
        )

        start = time.monotonic()
        state = process.run()
        elapsed = time.monotonic() - start

        assert state is RunState.TIMED_OUT
        assert not process.is_running
        assert process.exit_code is not None
        assert process.exit_code < 0
        assert elapsed < 10
        assert len(sink.cleanups) == 1

    def test_timeout_outcome_via_execute(self, sink: RecordingSink) -> None:
        """Test execute maps the timeout to TIMEOUT."""
        monitor = ProcessMonitor(sink=sink)

        outcome, _ = monitor.execute(
            python_command("import time; time.sleep(60)"), timeout=0.3, report_interval=0.1
        )

        assert outcome is ExecutionOutcome.TIMEOUT

    def test_timeout_keeps_last_observed_tps(self, sink: RecordingSink) -> None:
        """Test metrics seen before the timeout are returned."""
        script = (
            "import time\n"
            "print('llama_perf_context_print: 12.5 tokens per second')\n"
            "time.sleep(60)\n"
        )
        monitor = ProcessMonitor(sink=sink)

        outcome, metrics = monitor.execute(
            python_command(script), timeout=1.5, report_interval=0.2
        )

        assert outcome is ExecutionOutcome.TIMEOUT
        assert metrics.tokens_per_second == 12.5
        assert metrics.words_per_second >= 0

    def test_timeout_kills_process_group(self, temp_dir: Path, sink: RecordingSink) -> None:
        """Test children holding the output pipe are killed with the parent."""
        marker_file = temp_dir / "child_alive.txt"
        script = f"""
import subprocess
import sys
import time

subprocess.Popen([
    sys.executable, '-c',
    "import time; f=open({str(marker_file)!r}, 'a'); "
    "[f.write(str(i)+'\\\\n') or f.flush() or time.sleep(0.1) for i in range(1000)]"
])
print('child started', flush=True)
time.sleep(60)
"""
        monitor = ProcessMonitor(sink=sink)

        start = time.monotonic()
        outcome, _ = monitor.execute([sys.executable, "-c", script], timeout=1.0, report_interval=1)
        elapsed = time.monotonic() - start

        assert outcome is ExecutionOutcome.TIMEOUT
        # Reader saw EOF even though the child shared the pipe
        assert elapsed < 10
        assert marker_file.exists()

        time.sleep(0.5)
        final_size = marker_file.stat().st_size
        time.sleep(0.3)
        assert marker_file.stat().st_size == final_size, "Child should be dead"

    def test_orphaned_child_holding_pipe_is_killed(
        self, temp_dir: Path, sink: RecordingSink
    ) -> None:
        """Test a child outliving its exited parent is killed at the deadline."""
        marker_file = temp_dir / "orphan_alive.txt"
        script = f"""
import subprocess
import sys

subprocess.Popen([
    sys.executable, '-c',
    "import time; f=open({str(marker_file)!r}, 'a'); "
    "[f.write(str(i)+'\\\\n') or f.flush() or time.sleep(0.1) for i in range(1000)]"
])
print('parent exiting', flush=True)
"""
        process = MonitoredProcess(
            [sys.executable, "-c", script], timeout=1.0, report_interval=1, sink=sink
        )

        start = time.monotonic()
        state = process.run()
        elapsed = time.monotonic() - start

        assert state is RunState.TIMED_OUT
        assert elapsed < 4
        assert len(sink.cleanups) == 1
        assert "parent exiting" in sink.lines
        assert marker_file.exists()

        time.sleep(0.5)
        final_size = marker_file.stat().st_size
        time.sleep(0.3)
        assert marker_file.stat().st_size == final_size, "Child should be dead"


class TestProcessMonitorFailure:
    """Tests for runs that cannot be observed."""

    def test_missing_executable_is_failure(self, temp_dir: Path, sink: RecordingSink) -> None:
        """Test a spawn error is FAILURE and reported, not raised."""
        monitor = ProcessMonitor(sink=sink)

        outcome, metrics = monitor.execute(
            [str(temp_dir / "does-not-exist")], timeout=5, report_interval=1
        )

        assert outcome is ExecutionOutcome.FAILURE
        assert metrics.words_per_second == 0.0
        assert metrics.tokens_per_second == 0.0
        assert len(sink.errors) == 1
        assert isinstance(sink.errors[0], OSError)

    @pytest.mark.parametrize(
        ("timeout", "report_interval", "message"),
        [
            (0, 1, "timeout must be positive"),
            (-5, 1, "timeout must be positive"),
            (10, 0, "report_interval must be positive"),
        ],
    )
    def test_non_positive_durations_rejected(
        self, sink: RecordingSink, timeout: float, report_interval: float, message: str
    ) -> None:
        """Test bad durations raise before anything is spawned."""
        monitor = ProcessMonitor(sink=sink)

        with pytest.raises(ValueError, match=message):
            _ = monitor.execute(
                python_command("pass"), timeout=timeout, report_interval=report_interval
            )

        assert sink.starts == []

    def test_failed_state_and_no_process(self, temp_dir: Path) -> None:
        """Test the failed run leaves nothing running."""
        process = MonitoredProcess(
            [str(temp_dir / "does-not-exist")], timeout=5, report_interval=1
        )

        state = process.run()

        assert state is RunState.FAILED
        assert process.pid is None
        assert not process.is_running

    def test_sink_error_during_read_is_failure(self) -> None:
        """Test an exception while handling output becomes FAILURE."""

        class BrokenSink(RecordingSink):
            def on_output(self, line: str) -> None:
                raise OSError("sink broke")

        sink = BrokenSink()
        process = MonitoredProcess(
            python_command("import time; print('hello'); time.sleep(30)"),
            timeout=10,
            report_interval=1,
            sink=sink,
        )

        state = process.run()

        assert state is RunState.FAILED
        assert not process.is_running
        assert len(sink.errors) == 1
        assert "sink broke" in str(sink.errors[0])
