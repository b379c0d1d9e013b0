import json

import pytest
from click.testing import CliRunner

from ftsbench import cli as cli_module
from ftsbench.cli import cli, parse_pairs, parse_scalar
from ftsbench.config import BackendSettings
from ftsbench.indexing import build_index


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def index_dir(data_dir, tmp_path, monkeypatch):
    directory = str(tmp_path / "index")
    build_index(str(data_dir), directory)
    monkeypatch.setattr(cli_module, "BackendSettings", lambda: BackendSettings(index_dir=directory))
    return directory


def test_parse_scalar():
    assert parse_scalar("true") is True
    assert parse_scalar("12") == 12
    assert parse_scalar("99.5") == 99.5
    assert parse_scalar("Electronics") == "Electronics"


def test_parse_pairs():
    assert parse_pairs(("price:desc", "name:ASC"), ":", "--sort") == {"price": "desc", "name": "ASC"}
    with pytest.raises(Exception):
        parse_pairs(("price",), ":", "--sort")


def test_commands_are_listed_in_order(runner):
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    listed = [line.split()[0] for line in result.output.split("Commands:")[1].strip().splitlines()]
    assert listed == ["index", "stats", "search", "capabilities", "benchmark"]


def test_capabilities(runner):
    result = runner.invoke(cli, ["capabilities", "-b", "mariadb", "-b", "Sphinx"])
    assert result.exit_code == 0
    assert "multi_table_joins" in result.output
    assert "Whoosh" not in result.output
    assert "• Sphinx: AND OR NOT |" in result.output


def test_capabilities_unknown_backend(runner):
    result = runner.invoke(cli, ["capabilities", "-b", "elastic"])
    assert result.exit_code == 1


def test_index_and_stats(runner, data_dir, tmp_path):
    index_dir = str(tmp_path / "index")

    result = runner.invoke(cli, ["index", "--data-dir", str(data_dir), "--index-dir", index_dir])
    assert result.exit_code == 0, result.output
    assert f"Indexed 12 documents into {index_dir}" in result.output

    result = runner.invoke(cli, ["stats", "--index-dir", index_dir])
    assert result.exit_code == 0, result.output
    assert "Documents indexed: 12" in result.output
    assert "review: 3" in result.output


def test_index_without_records(runner, tmp_path):
    result = runner.invoke(cli, ["index", "--data-dir", str(tmp_path), "--index-dir", str(tmp_path / "index")])
    assert result.exit_code == 1


def test_search_whoosh(runner, index_dir):
    result = runner.invoke(cli, ["search", "-q", "laptop", "-b", "whoosh", "-f", "max_price=1000"])
    assert result.exit_code == 0, result.output
    assert "Whoosh results for: laptop" in result.output
    assert "Business Laptop" in result.output
    assert "Gaming Laptop Pro" not in result.output


def test_search_aggregation(runner, index_dir):
    result = runner.invoke(cli, ["search", "-q", "laptop", "-a", "category"])
    assert result.exit_code == 0, result.output
    assert "Count:" in result.output


def test_search_rejects_bad_input(runner, index_dir):
    assert runner.invoke(cli, ["search", "-q", "laptop", "-f", "colour=red"]).exit_code == 1
    assert runner.invoke(cli, ["search", "-q", "laptop", "-b", "elastic"]).exit_code == 1
    assert runner.invoke(cli, ["search", "-q", "laptop", "-s", "price"]).exit_code != 0


def test_benchmark_single_query(runner, index_dir):
    result = runner.invoke(cli, ["benchmark", "-b", "Whoosh", "-q", "laptop", "--iterations", "2",
                                 "--timeout", "0", "--no-save"])
    assert result.exit_code == 0, result.output
    assert 'Query: "laptop"' in result.output
    assert "Winner: Whoosh" in result.output


def test_benchmark_catalog_saves_results(runner, index_dir, tmp_path, monkeypatch):
    results_dir = tmp_path / "results"
    monkeypatch.setattr(cli_module, "RESULTS_DIR", str(results_dir))
    catalog = tmp_path / "catalog.json"
    catalog.write_text(json.dumps({
        "simple": {"query": "laptop"},
        "join_customers": {"query": "laptop", "join": ["customers", "orders"]},
    }), encoding="utf-8")

    result = runner.invoke(cli, ["benchmark", "-b", "Whoosh", "--catalog", str(catalog), "-i", "1",
                                 "--timeout", "0"])

    assert result.exit_code == 0, result.output
    assert "--- simple ---" in result.output
    assert "skipped: Whoosh does not support 'multi_table_joins'" in result.output
    assert "Overall winner: Whoosh" in result.output

    saved = list(results_dir.glob("benchmark_*.json"))
    assert len(saved) == 1
    payload = json.loads(saved[0].read_text())
    assert set(payload["results"]) == {"simple", "join_customers"}


def test_benchmark_strict_mode_fails(runner, index_dir, tmp_path):
    catalog = tmp_path / "catalog.json"
    catalog.write_text(json.dumps({"join_customers": {"query": "laptop", "join": ["customers"]}}),
                       encoding="utf-8")
    result = runner.invoke(cli, ["benchmark", "-b", "Whoosh", "--catalog", str(catalog), "--strict",
                                 "--timeout", "0", "--no-save"])
    assert result.exit_code == 1


def test_benchmark_missing_index(runner, tmp_path, monkeypatch):
    monkeypatch.setattr(cli_module, "BackendSettings", lambda: BackendSettings(index_dir=str(tmp_path / "none")))
    result = runner.invoke(cli, ["benchmark", "-b", "Whoosh", "-q", "laptop", "--no-save"])
    assert result.exit_code == 1
    assert "ftsbench index" in result.output
