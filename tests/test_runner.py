import tracemalloc

import pytest

from ftsbench.benchmark.runner import BenchmarkRunner
from ftsbench.benchmark.translators.sphinx import SphinxTranslator
from ftsbench.config import BenchmarkConfig, RetryPolicy
from ftsbench.criteria import SearchCriteria
from ftsbench.exceptions import CapabilityUnsupported


def make_runner(backends, **config):
    config.setdefault("iterations", 3)
    config.setdefault("trial_timeout", None)
    return BenchmarkRunner(backends, BenchmarkConfig(**config))


def test_metrics_per_backend_in_registration_order(fake_backend_cls):
    mariadb = fake_backend_cls("MariaDB", hits=4)
    sphinx = fake_backend_cls("Sphinx", translator=SphinxTranslator(), hits=2)
    runner = make_runner([mariadb, sphinx])

    metrics = runner.run_benchmark(SearchCriteria(query="laptop computer"))

    assert [m.backend_name for m in metrics] == ["MariaDB", "Sphinx"]
    assert [m.result_count for m in metrics] == [4, 2]
    for m in metrics:
        assert m.ok
        assert m.iterations == 3
        assert m.min_time <= m.avg_time <= m.max_time
        assert m.avg_memory >= 0
        assert m.query == "laptop computer"
        assert m.query_type == "simple_fulltext"


def test_lifecycle_warmup_then_trials(fake_backend_cls):
    backend = fake_backend_cls("MariaDB")
    make_runner([backend]).run_benchmark(SearchCriteria(query="laptop"), iterations=2)
    # every trial is a timed run followed by a traced one
    assert backend.events == ["prepare", "warmup"] + ["execute"] * 4 + ["cleanup"]


@pytest.mark.parametrize("iterations", [0, -1, 1.5, True])
def test_iterations_must_be_positive(fake_backend_cls, iterations):
    runner = make_runner([fake_backend_cls("MariaDB")])
    with pytest.raises(ValueError):
        runner.run_benchmark(SearchCriteria(query="laptop"), iterations=iterations)


@pytest.mark.parametrize("criteria,expected", [
    (SearchCriteria(query="laptop", filters={"category": "Electronics"}), "hybrid_with_filters"),
    (SearchCriteria(query="laptop AND gaming"), "complex_boolean"),
    (SearchCriteria(query="wireless OR bluetooth"), "complex_boolean"),
    (SearchCriteria(query="laptop"), "simple_fulltext"),
    (SearchCriteria(query="ANDROID phones"), "simple_fulltext"),
])
def test_query_type(criteria, expected):
    assert BenchmarkRunner.detect_query_type(criteria) == expected


def test_strict_mode_fails_before_any_backend_is_contacted(fake_backend_cls):
    mariadb = fake_backend_cls("MariaDB")
    sphinx = fake_backend_cls("Sphinx", translator=SphinxTranslator())
    runner = make_runner([mariadb, sphinx], strict_capabilities=True)

    with pytest.raises(CapabilityUnsupported) as excinfo:
        runner.run_benchmark(SearchCriteria(query="laptop", join_tables=["customers", "orders"]))

    assert excinfo.value.capability == "multi_table_joins"
    assert mariadb.events == []
    assert sphinx.events == []


def test_lenient_mode_flags_unsupported_backend(fake_backend_cls):
    mariadb = fake_backend_cls("MariaDB")
    sphinx = fake_backend_cls("Sphinx", translator=SphinxTranslator())
    runner = make_runner([mariadb, sphinx], strict_capabilities=False)

    metrics = runner.run_benchmark(SearchCriteria(query="laptop", join_tables=["customers", "orders"]))

    assert metrics[0].ok
    assert not metrics[1].ok
    assert "multi_table_joins" in metrics[1].error
    assert sphinx.events == []


def test_backend_failure_aborts_only_that_backend(fake_backend_cls):
    broken = fake_backend_cls("MariaDB", fail=True)
    healthy = fake_backend_cls("Sphinx", translator=SphinxTranslator())
    metrics = make_runner([broken, healthy]).run_benchmark(SearchCriteria(query="laptop"))

    assert "lost the connection" in metrics[0].error
    assert metrics[0].iterations == 0
    assert broken.events[-1] == "cleanup"
    assert metrics[1].ok


def test_warmup_is_retried(fake_backend_cls):
    backend = fake_backend_cls("MariaDB", warmup_failures=2)
    runner = make_runner([backend], retry=RetryPolicy(attempts=3, backoff=0))

    metrics = runner.run_benchmark(SearchCriteria(query="laptop"), iterations=1)

    assert metrics[0].ok
    assert backend.events.count("warmup") == 3


def test_retries_are_bounded(fake_backend_cls):
    backend = fake_backend_cls("MariaDB", warmup_failures=5)
    runner = make_runner([backend], retry=RetryPolicy(attempts=2, backoff=0))

    metrics = runner.run_benchmark(SearchCriteria(query="laptop"), iterations=1)

    assert "is down" in metrics[0].error
    assert backend.events.count("warmup") == 2


def test_trial_timeout(fake_backend_cls):
    slow = fake_backend_cls("MariaDB", delay=0.5)
    fast = fake_backend_cls("Sphinx", translator=SphinxTranslator())
    runner = make_runner([slow, fast], trial_timeout=0.05)

    metrics = runner.run_benchmark(SearchCriteria(query="laptop"), iterations=2)

    assert "exceeded" in metrics[0].error
    assert slow.events[-2:] == ["abort", "cleanup"]
    assert not slow.overlapped
    assert metrics[1].ok
    assert metrics[1].iterations == 2


def test_trials_run_in_worker_when_timeout_set(fake_backend_cls):
    backend = fake_backend_cls("MariaDB")
    metrics = make_runner([backend], trial_timeout=5).run_benchmark(SearchCriteria(query="laptop"))
    assert metrics[0].ok
    assert metrics[0].result_count == 3


def test_cancel_between_trials(fake_backend_cls):
    runner = make_runner([], iterations=5)
    first = fake_backend_cls("MariaDB", on_execute=runner.cancel)
    second = fake_backend_cls("Sphinx", translator=SphinxTranslator())
    runner.backends = [first, second]

    metrics = runner.run_benchmark(SearchCriteria(query="laptop"))

    assert runner.cancelled
    assert metrics[0].iterations == 1
    assert metrics[0].error == "cancelled after 1 of 5 trials"
    assert metrics[1].error == "cancelled"
    assert second.events == []
    assert first.events[-1] == "cleanup"


def test_progress_callback(fake_backend_cls):
    seen = []
    runner = make_runner([fake_backend_cls("MariaDB"), fake_backend_cls("Sphinx", translator=SphinxTranslator())])
    runner.run_benchmark(SearchCriteria(query="laptop"), iterations=1, progress_callback=seen.append)
    assert seen == [50, 100]


def test_compare_results_uses_first_backend_as_baseline(fake_backend_cls):
    runner = make_runner([fake_backend_cls("MariaDB"), fake_backend_cls("Sphinx", translator=SphinxTranslator())])
    rows = runner.compare_results(runner.run_benchmark(SearchCriteria(query="laptop")))
    assert [row.backend_name for row in rows] == ["MariaDB", "Sphinx"]
    assert rows[0].speedup_factor == pytest.approx(1.0)


def test_run_catalog(fake_backend_cls):
    catalog = {
        "simple": {"query": "laptop computer", "mode": "NATURAL"},
        "sort_price_asc": {"query": "laptop", "sort": {"price": "ASC"}},
        "join_customers": {"query": "laptop", "join": ["customers", "orders"]},
    }
    runner = make_runner(
        [fake_backend_cls("MariaDB"), fake_backend_cls("Sphinx", translator=SphinxTranslator())],
        iterations=1,
        strict_capabilities=False,
    )

    results = runner.run_catalog(catalog)

    assert list(results) == ["simple", "sort_price_asc", "join_customers"]
    assert all(len(rows) == 2 for rows in results.values())
    assert results["simple"][1].error is None
    assert "price_sorting" in results["sort_price_asc"][1].error
    assert "multi_table_joins" in results["join_customers"][1].error


def test_run_catalog_category_and_configured_catalog(fake_backend_cls):
    catalog = {
        "simple": SearchCriteria(query="laptop"),
        "boolean_required": SearchCriteria(query="+wireless +headphones", match_mode="BOOLEAN"),
    }
    runner = make_runner([fake_backend_cls("MariaDB")], iterations=1, catalog=catalog)
    assert list(runner.run_catalog(category="search modes")) == ["boolean_required"]
    assert list(runner.run_catalog()) == ["simple", "boolean_required"]


@pytest.mark.parametrize("trial_timeout", [None, 5])
def test_timed_runs_are_not_traced(fake_backend_cls, trial_timeout):
    tracing = []
    backend = fake_backend_cls("MariaDB", on_execute=lambda: tracing.append(tracemalloc.is_tracing()))

    metrics = make_runner([backend], trial_timeout=trial_timeout).run_benchmark(
        SearchCriteria(query="laptop"), iterations=2
    )

    assert metrics[0].ok
    assert tracing == [False, True, False, True]
    assert not tracemalloc.is_tracing()


def test_cleanup_waits_for_the_timed_out_call(fake_backend_cls):
    slow = fake_backend_cls("MariaDB", delay=0.3)
    runner = make_runner([slow], trial_timeout=0.05)

    metrics = runner.run_benchmark(SearchCriteria(query="laptop"), iterations=1)

    assert not metrics[0].ok
    assert slow.events == ["prepare", "warmup", "execute", "abort", "cleanup"]
    assert not slow.overlapped
