from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence


@dataclass(frozen=True)
class BenchmarkMetrics:
    """
    Per-backend summary of one sweep; times in seconds, memory in bytes

    error is set for a flagged backend (failed, unsupported or cancelled).
    """
    backend_name: str
    query_type: str
    avg_time: float = 0.0
    min_time: float = 0.0
    max_time: float = 0.0
    avg_memory: float = 0.0
    result_count: int = 0
    iterations: int = 0
    executed_at: datetime = field(default_factory=datetime.now)
    query: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backend": self.backend_name,
            "query_type": self.query_type,
            "avg_time_ms": round(self.avg_time * 1000, 2),
            "min_time_ms": round(self.min_time * 1000, 2),
            "max_time_ms": round(self.max_time * 1000, 2),
            "avg_memory_mb": round(self.avg_memory / 1024 / 1024, 2),
            "result_count": self.result_count,
            "iterations": self.iterations,
            "executed_at": self.executed_at.strftime("%Y-%m-%d %H:%M:%S"),
            "query": self.query,
            "error": self.error,
        }


@dataclass(frozen=True)
class ComparisonRow:
    """
    One backend relative to the baseline (the first backend)
    """
    backend_name: str
    execution_time: float
    speedup_factor: float
    memory_usage_mb: float
    memory_ratio: float
    result_count: int
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backend": self.backend_name,
            "execution_time": self.execution_time,
            "speedup_factor": round(self.speedup_factor, 2),
            "memory_usage_mb": round(self.memory_usage_mb, 2),
            "memory_ratio": round(self.memory_ratio, 2),
            "result_count": self.result_count,
            "error": self.error,
        }


def compare_results(metrics: Sequence[BenchmarkMetrics]) -> List[ComparisonRow]:
    """
    Rank every backend against the first one

    A factor of 0 means the pair is not comparable (zero denominator).
    """
    if not metrics:
        return []

    baseline = metrics[0]
    rows = []
    for entry in metrics:
        speedup = baseline.avg_time / entry.avg_time if entry.avg_time else 0.0
        ratio = entry.avg_memory / baseline.avg_memory if baseline.avg_memory else 0.0
        rows.append(ComparisonRow(
            backend_name=entry.backend_name,
            execution_time=entry.avg_time,
            speedup_factor=speedup,
            memory_usage_mb=entry.avg_memory / 1024 / 1024,
            memory_ratio=ratio,
            result_count=entry.result_count,
            error=entry.error,
        ))
    return rows


def pick_winner(rows: Sequence[ComparisonRow]) -> Optional[str]:
    """
    Lowest execution time among healthy rows; the first seen wins a tie
    """
    winner = None
    for row in rows:
        if row.error is not None or row.execution_time <= 0:
            continue
        if winner is None or row.execution_time < winner.execution_time:
            winner = row
    return winner.backend_name if winner else None


def tally_wins(results: Mapping[str, Sequence[ComparisonRow]]) -> Dict[str, int]:
    """
    Count catalog entries won per backend
    """
    wins: Counter = Counter()
    for rows in results.values():
        for row in rows:
            wins.setdefault(row.backend_name, 0)
        winner = pick_winner(rows)
        if winner is not None:
            wins[winner] += 1
    return dict(wins)
