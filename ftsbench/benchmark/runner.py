import logging
import threading
import time
import tracemalloc
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import BenchmarkConfig
from ..criteria import SearchCriteria
from ..exceptions import BackendError, BackendUnavailable, CapabilityUnsupported, TrialTimeout
from .engines.base import SearchBackend
from .loaders.catalog_loader import CatalogLoader
from .metrics.comparator import BenchmarkMetrics, ComparisonRow, compare_results
from .translators.base import NativeQuery

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IterationSample:
    """
    One timed trial
    """
    elapsed_seconds: float
    peak_memory_delta_bytes: int
    result_count: int


class BenchmarkRunner:
    """
    Runs the same criteria against every registered backend and collects
    per-backend metrics

    Backends are swept one after another, never concurrently.
    """

    def __init__(self,
                 backends: Sequence[SearchBackend],
                 config: Optional[BenchmarkConfig] = None):
        self.backends = list(backends)
        self.config = config or BenchmarkConfig()
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """
        Stop the sweep in progress after the current trial
        """
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @staticmethod
    def detect_query_type(criteria: SearchCriteria) -> str:
        if criteria.has_filters:
            return "hybrid_with_filters"
        if " AND " in criteria.query or " OR " in criteria.query:
            return "complex_boolean"
        return "simple_fulltext"

    def _retrying(self) -> Retrying:
        policy = self.config.retry
        return Retrying(
            stop=stop_after_attempt(policy.attempts),
            wait=wait_exponential(multiplier=policy.backoff, max=policy.max_backoff),
            retry=retry_if_exception_type(BackendUnavailable),
            before_sleep=lambda state: logger.warning(
                f"Retrying after attempt {state.attempt_number}: {state.outcome.exception()}"
            ),
            reraise=True,
        )

    def _call(self, executor: Optional[ThreadPoolExecutor], backend: SearchBackend,
              fn: Callable[..., Any], *args) -> Any:
        if executor is None:
            return fn(*args)
        timeout = self.config.trial_timeout
        future = executor.submit(fn, *args)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeout as e:
            future.cancel()
            logger.warning(f"{backend.get_name()}: call exceeded {timeout}s, aborting")
            backend.abort()
            raise TrialTimeout(backend.get_name(), timeout) from e

    def _peak_memory(self, executor: Optional[ThreadPoolExecutor], backend: SearchBackend,
                     native: NativeQuery) -> int:
        """
        Peak allocation of an untimed, traced replicate of a trial
        """
        tracing = tracemalloc.is_tracing()
        if not tracing:
            tracemalloc.start()
        try:
            tracemalloc.reset_peak()
            before, _ = tracemalloc.get_traced_memory()
            hits = self._call(executor, backend, backend.run, native)
            _, peak = tracemalloc.get_traced_memory()
            del hits
        finally:
            if not tracing:
                tracemalloc.stop()
        return max(peak - before, 0)

    def _trial(self, executor: Optional[ThreadPoolExecutor], backend: SearchBackend,
               native: NativeQuery) -> IterationSample:
        # timed without allocation tracing; memory comes from a second run
        start = time.perf_counter()
        hits = self._call(executor, backend, backend.run, native)
        elapsed = time.perf_counter() - start

        result_count = len(hits)
        # release the response before the traced run starts
        del hits
        return IterationSample(
            elapsed_seconds=elapsed,
            peak_memory_delta_bytes=self._peak_memory(executor, backend, native),
            result_count=result_count,
        )

    def _sweep(self, backend: SearchBackend, native: NativeQuery, iterations: int) -> List[IterationSample]:
        samples: List[IterationSample] = []
        retrying = self._retrying()

        with backend.session():
            executor = None
            if self.config.trial_timeout:
                executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"ftsbench-{backend.get_name()}")
            try:
                retrying(self._call, executor, backend, backend.warmup)
                for i in range(iterations):
                    sample = retrying(self._trial, executor, backend, native)
                    samples.append(sample)
                    logger.debug(
                        f"{backend.get_name()} trial {i + 1}/{iterations}: "
                        f"{sample.elapsed_seconds * 1000:.2f} ms, "
                        f"{sample.peak_memory_delta_bytes} bytes, {sample.result_count} results"
                    )
                    if self._cancelled.is_set():
                        logger.warning(f"{backend.get_name()}: sweep cancelled after {i + 1} trials")
                        break
            finally:
                if executor is not None:
                    # the session is released only once no call is left running
                    executor.shutdown(wait=True, cancel_futures=True)
        return samples

    def _flagged(self, backend: SearchBackend, criteria: SearchCriteria,
                 query_type: str, error: str) -> BenchmarkMetrics:
        return BenchmarkMetrics(
            backend_name=backend.get_name(),
            query_type=query_type,
            query=criteria.query,
            error=error,
        )

    @staticmethod
    def _aggregate(backend: SearchBackend, criteria: SearchCriteria, query_type: str,
                   samples: List[IterationSample], error: Optional[str] = None) -> BenchmarkMetrics:
        times = [s.elapsed_seconds for s in samples]
        memory = [s.peak_memory_delta_bytes for s in samples]
        return BenchmarkMetrics(
            backend_name=backend.get_name(),
            query_type=query_type,
            avg_time=sum(times) / len(times),
            min_time=min(times),
            max_time=max(times),
            avg_memory=sum(memory) / len(memory),
            result_count=samples[-1].result_count,
            iterations=len(samples),
            query=criteria.query,
            error=error,
        )

    def _plan(self, criteria: SearchCriteria) -> List[Union[NativeQuery, CapabilityUnsupported]]:
        """
        Translate for every backend before any of them is contacted
        """
        plans: List[Union[NativeQuery, CapabilityUnsupported]] = []
        for backend in self.backends:
            try:
                plans.append(backend.translate(criteria))
            except CapabilityUnsupported as e:
                if self.config.strict_capabilities:
                    raise
                logger.warning(f"{backend.get_name()} skipped: {e}")
                plans.append(e)
        return plans

    def _run(self, criteria: SearchCriteria, iterations: int,
             progress_callback: Optional[Callable[[int], None]] = None) -> List[BenchmarkMetrics]:
        query_type = self.detect_query_type(criteria)
        plans = self._plan(criteria)
        metrics = []
        total = len(self.backends)

        for i, (backend, plan) in enumerate(zip(self.backends, plans)):
            name = backend.get_name()
            if isinstance(plan, CapabilityUnsupported):
                metrics.append(self._flagged(backend, criteria, query_type, str(plan)))
            elif self._cancelled.is_set():
                metrics.append(self._flagged(backend, criteria, query_type, "cancelled"))
            else:
                logger.info(f"Benchmarking {name}: '{criteria.query}' ({query_type}, {iterations} iterations)")
                try:
                    samples = self._sweep(backend, plan, iterations)
                except BackendError as e:
                    logger.error(f"{name} failed: {e}")
                    metrics.append(self._flagged(backend, criteria, query_type, str(e)))
                else:
                    error = None if len(samples) == iterations else f"cancelled after {len(samples)} of {iterations} trials"
                    result = self._aggregate(backend, criteria, query_type, samples, error)
                    logger.info(
                        f"{name}: avg {result.avg_time * 1000:.2f} ms, "
                        f"min {result.min_time * 1000:.2f} ms, max {result.max_time * 1000:.2f} ms, "
                        f"{result.result_count} results"
                    )
                    metrics.append(result)

            if progress_callback:
                progress_callback(int((i + 1) / total * 100))

        return metrics

    def _iterations(self, iterations: Optional[int]) -> int:
        iterations = self.config.iterations if iterations is None else iterations
        if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations < 1:
            raise ValueError(f"iterations must be an integer >= 1, got {iterations!r}")
        return iterations

    def run_benchmark(self, criteria: SearchCriteria, iterations: Optional[int] = None,
                      progress_callback: Optional[Callable[[int], None]] = None) -> List[BenchmarkMetrics]:
        """Run the criteria against every backend

        Args:
            criteria: What to search for
            iterations: Timed trials per backend, defaults to the configured count
            progress_callback: Optional callback receiving a percentage

        Returns:
            One metric per backend, in registration order
        """
        iterations = self._iterations(iterations)
        self._cancelled.clear()
        return self._run(criteria, iterations, progress_callback)

    def compare_results(self, metrics: Sequence[BenchmarkMetrics]) -> List[ComparisonRow]:
        return compare_results(metrics)

    def run_catalog(self,
                    catalog: Optional[Mapping[str, Any]] = None,
                    category: Optional[str] = None,
                    iterations: Optional[int] = None,
                    progress_callback: Optional[Callable[[int], None]] = None) -> Dict[str, List[ComparisonRow]]:
        """Run every catalog entry and compare the backends on each

        Args:
            catalog: Name -> SearchCriteria (or criteria mapping); defaults to
                the configured catalog, then the built-in one
            category: Keep only entries of this category
            iterations: Timed trials per backend and entry
            progress_callback: Optional callback receiving a percentage

        Returns:
            Comparison rows per entry name
        """
        if catalog is None:
            catalog = self.config.catalog
        entries = CatalogLoader(catalog).load(category)
        iterations = self._iterations(iterations)

        self._cancelled.clear()
        results: Dict[str, List[ComparisonRow]] = {}
        total = len(entries)
        for i, (name, criteria) in enumerate(entries.items()):
            if self._cancelled.is_set():
                logger.warning(f"Catalog sweep cancelled before '{name}'")
                break
            logger.info(f"Catalog entry '{name}': '{criteria.query}'")
            results[name] = compare_results(self._run(criteria, iterations))
            if progress_callback:
                progress_callback(int((i + 1) / total * 100))
        return results
