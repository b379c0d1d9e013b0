from .comparator import BenchmarkMetrics, ComparisonRow, compare_results, pick_winner, tally_wins

__all__ = [
    'BenchmarkMetrics',
    'ComparisonRow',
    'compare_results',
    'pick_winner',
    'tally_wins'
]
