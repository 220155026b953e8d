"""Threshold rules that turn a snapshot and process table into suggestions."""

import sys
from collections.abc import Callable, Sequence

from hostmon.models import Impact, OptimizationSuggestion, ProcessInfo, Snapshot, SuggestionType

Rule = Callable[[Snapshot, Sequence[ProcessInfo]], list[OptimizationSuggestion]]

MEMORY_PRESSURE_THRESHOLD = 70.0
MEMORY_HOG_MIN_PERCENT = 5.0
MEMORY_HOG_HIGH_PERCENT = 10.0
MEMORY_HOG_LIMIT = 3
CPU_HOG_THRESHOLD = 50.0
CPU_HOG_HIGH_PERCENT = 80.0
LOW_DISK_FRACTION = 0.1
SWAP_FRACTION = 0.5

if sys.platform == "darwin":
    CACHE_CLEAR_COMMAND = "rm -rf ~/Library/Caches/*"
else:
    CACHE_CLEAR_COMMAND = "rm -rf ~/.cache/*"


def memory_pressure_rule(
    snapshot: Snapshot, processes: Sequence[ProcessInfo]
) -> list[OptimizationSuggestion]:
    """Under memory pressure, suggest quitting the three largest memory users."""
    if snapshot.memory.pressure <= MEMORY_PRESSURE_THRESHOLD:
        return []

    hogs = sorted(
        (p for p in processes if p.memory > MEMORY_HOG_MIN_PERCENT),
        key=lambda p: p.memory,
        reverse=True,
    )[:MEMORY_HOG_LIMIT]

    return [
        OptimizationSuggestion(
            type=SuggestionType.QUIT_APP,
            app=proc.name,
            reason=f"Using {proc.memory:.1f}% of memory while system is under pressure",
            impact=Impact.HIGH if proc.memory > MEMORY_HOG_HIGH_PERCENT else Impact.MEDIUM,
            command=f"kill -TERM {proc.pid}",
        )
        for proc in hogs
    ]


def cpu_hog_rule(
    snapshot: Snapshot, processes: Sequence[ProcessInfo]
) -> list[OptimizationSuggestion]:
    """
    Flag every process above the CPU threshold.

    The suggestion type is ``reduce_memory`` even though the trigger is CPU
    usage. Consumers match on that literal, so it stays as is.
    """
    return [
        OptimizationSuggestion(
            type=SuggestionType.REDUCE_MEMORY,
            app=proc.name,
            reason=f"Consuming {proc.cpu:.1f}% CPU continuously",
            impact=Impact.HIGH if proc.cpu > CPU_HOG_HIGH_PERCENT else Impact.MEDIUM,
        )
        for proc in processes
        if proc.cpu > CPU_HOG_THRESHOLD
    ]


def low_disk_rule(
    snapshot: Snapshot, processes: Sequence[ProcessInfo]
) -> list[OptimizationSuggestion]:
    if snapshot.disk.available >= snapshot.disk.total * LOW_DISK_FRACTION:
        return []
    return [
        OptimizationSuggestion(
            type=SuggestionType.CLEAR_CACHE,
            reason="Less than 10% disk space remaining",
            impact=Impact.HIGH,
            command=CACHE_CLEAR_COMMAND,
        )
    ]


def swap_rule(
    snapshot: Snapshot, processes: Sequence[ProcessInfo]
) -> list[OptimizationSuggestion]:
    if snapshot.memory.swap_used <= snapshot.memory.swap_total * SWAP_FRACTION:
        return []
    return [
        OptimizationSuggestion(
            type=SuggestionType.REDUCE_MEMORY,
            reason="High swap usage indicates memory pressure",
            impact=Impact.HIGH,
        )
    ]


DEFAULT_RULES: tuple[Rule, ...] = (
    memory_pressure_rule,
    cpu_hog_rule,
    low_disk_rule,
    swap_rule,
)


def analyze(
    snapshot: Snapshot,
    processes: Sequence[ProcessInfo],
    rules: Sequence[Rule] = DEFAULT_RULES,
) -> list[OptimizationSuggestion]:
    """Apply each rule in order and concatenate their suggestions."""
    suggestions: list[OptimizationSuggestion] = []
    for rule in rules:
        suggestions.extend(rule(snapshot, processes))
    return suggestions
