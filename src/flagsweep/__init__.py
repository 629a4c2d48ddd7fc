"""
flagsweep - Parameter-sweep benchmarking.

Run an executable once per flag combination, bound every run, measure it.
"""

from flagsweep.bench import run_sweep, summarize
from flagsweep.runner import ProcessMonitor
from flagsweep.sweep import SweepConfig, build_command, generate_grid_combinations

__version__ = "0.1.0"
__all__ = [
    "ProcessMonitor",
    "SweepConfig",
    "__version__",
    "build_command",
    "generate_grid_combinations",
    "run_sweep",
    "summarize",
]
