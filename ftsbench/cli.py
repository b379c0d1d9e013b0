import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import click

from .config import (
    DATA_DIR,
    DEFAULT_BACKENDS,
    DEFAULT_ITERATIONS,
    DEFAULT_LIMIT,
    DEFAULT_TRIAL_TIMEOUT,
    INDEX_DIR,
    RESULTS_DIR,
    BackendSettings,
    BenchmarkConfig,
    RetryPolicy,
)
from .exceptions import FtsBenchError


class OrderedGroup(click.Group):
    def __init__(self, name=None, commands=None, **attrs):
        super(OrderedGroup, self).__init__(name, commands, **attrs)
        self.commands = commands or {}
        self.command_order = [
            'index',
            'stats',
            'search',
            'capabilities',
            'benchmark'
        ]

    def list_commands(self, ctx):
        return self.command_order


def print_header(text: str):
    click.echo("\n" + "=" * 50)
    click.echo(f"  {text}")
    click.echo("=" * 50 + "\n")


def fail(message: str):
    click.echo(f"\nError: {message}", err=True)
    sys.exit(1)


def parse_scalar(value: str) -> Any:
    """
    Filter values from the command line: booleans, numbers, else text
    """
    lowered = value.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            continue
    return value


def parse_pairs(pairs: Sequence[str], separator: str, option: str) -> Dict[str, str]:
    parsed = {}
    for pair in pairs:
        key, sep, value = pair.partition(separator)
        if not sep or not key:
            raise click.BadParameter(f"expected KEY{separator}VALUE, got '{pair}'", param_hint=option)
        parsed[key.strip()] = value.strip()
    return parsed


def save_results(payload: Mapping[str, Any], prefix: str) -> Path:
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    output_dir = Path(RESULTS_DIR)
    output_dir.mkdir(parents=True, exist_ok=True)

    output = output_dir / f"{prefix}_{timestamp}.json"
    with open(output, "w") as f:
        json.dump({"timestamp": timestamp, **payload}, f, indent=2, default=str)
    return output


def display_comparison(rows) -> None:
    from .benchmark.metrics.comparator import pick_winner

    click.echo(f"{'Backend':<12}{'Avg Time':>14}{'Speedup':>10}{'Memory':>12}{'Results':>10}")
    for row in rows:
        if row.error:
            click.echo(f"{row.backend_name:<12}  skipped: {row.error}")
            continue
        click.echo(
            f"{row.backend_name:<12}"
            f"{row.execution_time * 1000:>11.2f} ms"
            f"{row.speedup_factor:>9.2f}x"
            f"{row.memory_usage_mb:>9.2f} MB"
            f"{row.result_count:>10,}"
        )
    click.echo(f"\nWinner: {pick_winner(rows) or 'N/A'}")


@click.group(cls=OrderedGroup)
@click.option('--verbose', '-v', count=True, help='Increase log verbosity (-v info, -vv debug)')
def cli(verbose: int):
    """
    ftsbench: full-text search backend benchmark
    """
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format='%(asctime)s - %(levelname)s - %(message)s')


@cli.command()
@click.option('--data-dir', default=DATA_DIR, show_default=True, help='Directory holding <table>.json record files')
@click.option('--index-dir', default=INDEX_DIR, show_default=True, help='Whoosh index directory')
def index(data_dir: str, index_dir: str):
    """
    Build the Whoosh index
    """
    from .indexing import build_index

    print_header("Indexing Records")
    try:
        with click.progressbar(length=100, label='Indexing records') as bar:
            def progress_callback(percent):
                bar.update(percent - bar.pos)

            count = build_index(data_dir, index_dir, progress_callback)
    except (ValueError, OSError) as e:
        fail(f"indexing records: {e}")

    click.echo(f"\nIndexed {count} documents into {index_dir}")


@cli.command()
@click.option('--index-dir', default=INDEX_DIR, show_default=True, help='Whoosh index directory')
def stats(index_dir: str):
    """
    Show Whoosh index statistics
    """
    from .indexing import get_index_stats

    print_header("Statistics")
    try:
        index_stats = get_index_stats(index_dir)
    except (ValueError, OSError) as e:
        fail(f"retrieving index statistics: {e}")

    click.echo("Index Statistics:")
    click.echo(f"• Documents indexed: {index_stats['doc_count']}")
    for source_type, count in index_stats['per_source'].items():
        click.echo(f"  - {source_type}: {count}")
    click.echo(f"• Index size: {index_stats['index_size_mb']:.2f} MB")


@cli.command()
@click.option('--query', '-q', prompt='Enter your search query', help='Search query')
@click.option('--backend', '-b', default='Whoosh', show_default=True, help='Backend to search')
@click.option('--limit', '-l', default=10, help='Number of results to show')
@click.option('--offset', default=0, help='Results to skip')
@click.option('--mode', '-m', default='NATURAL', help='NATURAL, BOOLEAN or QUERY_EXPANSION')
@click.option('--filter', '-f', 'filters', multiple=True, help='Filter as KEY=VALUE (repeatable)')
@click.option('--sort', '-s', 'sort', multiple=True, help='Sort as FIELD:ASC|DESC (repeatable)')
@click.option('--aggregate', '-a', default=None, help='category, brand, price_range or rating')
@click.option('--union', '-u', 'union', multiple=True, help='Union source table (repeatable)')
@click.option('--join', '-j', 'join', multiple=True, help='Join table (repeatable)')
def search(query: str, backend: str, limit: int, offset: int, mode: str,
           filters: Tuple[str, ...], sort: Tuple[str, ...], aggregate: Optional[str],
           union: Tuple[str, ...], join: Tuple[str, ...]):
    """
    Search a single backend
    """
    from .benchmark.engines import build_backend
    from .criteria import SearchCriteria

    try:
        criteria = SearchCriteria(
            query=query,
            filters={k: parse_scalar(v) for k, v in parse_pairs(filters, "=", "--filter").items()},
            limit=limit,
            offset=offset,
            order_by=parse_pairs(sort, ":", "--sort"),
            match_mode=mode,
            aggregate_by=aggregate,
            join_tables=union or join,
            use_union=bool(union),
        )
        engine = build_backend(backend, BackendSettings())
        print_header(f"{engine.get_name()} results for: {query}")
        with engine.session():
            hits = engine.search(criteria)
    except FtsBenchError as e:
        fail(str(e))

    if not hits:
        click.echo("No results found.")
        return

    for i, hit in enumerate(hits, 1):
        label = hit.primary_fields.get('name') or hit.primary_fields.get('title') or hit.id
        click.echo(f"{i}. [{hit.source_type or '-'}] {label}")
        click.echo(f"   Relevance: {hit.relevance:.4f}")
        if aggregate and 'count' in hit.primary_fields:
            click.echo(f"   Count: {hit.primary_fields['count']}")
        click.echo("")


@cli.command()
@click.option('--backend', '-b', 'backends', multiple=True, help='Backends to show (default: all)')
def capabilities(backends: Tuple[str, ...]):
    """
    Show the capability matrix
    """
    from .capabilities import DESCRIPTORS, capability_matrix

    by_key = {name.lower(): descriptor for name, descriptor in DESCRIPTORS.items()}
    selected = []
    for name in backends or DESCRIPTORS:
        if name.lower() not in by_key:
            fail(f"unknown backend '{name}' (choose from {', '.join(DESCRIPTORS)})")
        selected.append(by_key[name.lower()])

    print_header("Capabilities")
    matrix = capability_matrix(selected)
    names = [d.backend_name for d in selected]
    click.echo(f"{'Capability':<28}" + "".join(f"{n:>10}" for n in names))
    for capability, support in matrix.items():
        click.echo(f"{capability:<28}" + "".join(f"{'yes' if support[n] else '-':>10}" for n in names))

    click.echo("\nBoolean operators:")
    for descriptor in selected:
        click.echo(f"• {descriptor.backend_name}: {' '.join(descriptor.boolean_operators)}")


@cli.command()
@click.option('--query', '-q', default=None, help='Custom search query')
@click.option('--iterations', '-i', default=DEFAULT_ITERATIONS, show_default=True, help='Timed trials per backend')
@click.option('--all', 'run_all', is_flag=True, help='Run the whole query catalog')
@click.option('--category', '-c', default=None, help='Only catalog entries of this category (e.g. boolean, filtering)')
@click.option('--catalog', type=click.Path(exists=True, dir_okay=False), default=None, help='JSON query catalog')
@click.option('--backend', '-b', 'backends', multiple=True, help='Backends in comparison order (first is the baseline)')
@click.option('--limit', '-l', default=DEFAULT_LIMIT, help='Result limit for --query')
@click.option('--timeout', default=DEFAULT_TRIAL_TIMEOUT, show_default=True, help='Seconds per trial, 0 disables')
@click.option('--retries', default=1, show_default=True, help='Attempts per trial on connection faults')
@click.option('--strict/--lenient', default=False, help='Abort on unsupported features instead of flagging the backend')
@click.option('--save/--no-save', default=True, help='Save benchmark results to file')
def benchmark(query: Optional[str], iterations: int, run_all: bool, category: Optional[str],
              catalog: Optional[str], backends: Tuple[str, ...], limit: int, timeout: float,
              retries: int, strict: bool, save: bool):
    """
    Run search benchmarks
    """
    from .benchmark.engines import build_backends
    from .benchmark.loaders.catalog_loader import CatalogLoader, DEFAULT_QUERY_CATALOG
    from .benchmark.metrics.comparator import tally_wins
    from .benchmark.runner import BenchmarkRunner
    from .criteria import SearchCriteria

    print_header("Search Performance Benchmark")
    try:
        config = BenchmarkConfig(
            iterations=iterations,
            trial_timeout=timeout or None,
            strict_capabilities=strict,
            retry=RetryPolicy(attempts=retries),
        )
        runner = BenchmarkRunner(build_backends(backends or DEFAULT_BACKENDS, BackendSettings()), config)

        if query or not (run_all or catalog):
            if not query:
                click.echo("Running the default query. Use --all for the catalog or --query for a custom one.")
                criteria = SearchCriteria.from_dict({**DEFAULT_QUERY_CATALOG["simple"], "limit": limit})
            else:
                criteria = SearchCriteria(query=query, limit=limit)

            click.echo(f'Query: "{criteria.query}"\n')
            with click.progressbar(length=100, label='Benchmarking') as bar:
                def progress_callback(percent):
                    bar.update(percent - bar.pos)

                metrics = runner.run_benchmark(criteria, progress_callback=progress_callback)
            rows = runner.compare_results(metrics)

            click.echo("")
            display_comparison(rows)
            payload = {
                "criteria": criteria.to_dict(),
                "metrics": [m.to_dict() for m in metrics],
                "comparison": [r.to_dict() for r in rows],
            }
        else:
            entries = CatalogLoader.from_file(catalog).entries if catalog else None
            results = runner.run_catalog(entries, category=category)
            if not results:
                click.echo("No catalog entries matched.")
                return

            for name, rows in results.items():
                click.echo(f"\n--- {name} ---")
                display_comparison(rows)

            wins = tally_wins(results)
            print_header("Overall Summary")
            for name, count in wins.items():
                click.echo(f"{name} wins: {count}")
            ranked = sorted(wins.items(), key=lambda item: item[1], reverse=True)
            if len(ranked) > 1 and ranked[0][1] == ranked[1][1]:
                click.echo("Result: Tie")
            elif ranked:
                click.echo(f"Overall winner: {ranked[0][0]}")
            payload = {"results": {name: [r.to_dict() for r in rows] for name, rows in results.items()}}
    except (FtsBenchError, ValueError, OSError) as e:
        fail(str(e))

    if save:
        output = save_results(payload, "benchmark")
        click.echo(f"\nResults saved to {output}")


def main():
    cli()


if __name__ == '__main__':
    main()
