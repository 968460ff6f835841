from __future__ import annotations

import json

import pytest

from conftest import FakeGateway, analyze_response, failing_command
from shardkey_advisor import cli


def test_cli_profiles(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["profiles"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("ecommerce: E-commerce")
    assert "social: Social Media" in out
    assert "Get customer orders" in out


def test_cli_analyze_prints_ranking(capsys: pytest.CaptureFixture[str]) -> None:
    gateway = FakeGateway(on_command=lambda command: analyze_response())
    code = cli.main(
        ["analyze", "shop.orders", "--key", '{"customerId": 1}', "--key", '{"region": 1}'],
        gateway=gateway,
    )
    assert code == 0
    out = capsys.readouterr().out
    assert '{"customerId":1} -> score=96 grade=A' in out
    assert "primary: Recommended Shard Key" in out
    assert [c["key"] for c in gateway.commands] == [{"customerId": 1}, {"region": 1}]
    assert gateway.closed


def test_cli_analyze_json(capsys: pytest.CaptureFixture[str]) -> None:
    gateway = FakeGateway(on_command=lambda command: analyze_response())
    code = cli.main(
        ["--sample-size", "2000", "analyze", "shop.orders", "--key", '{"a": "hashed"}', "--json"],
        gateway=gateway,
    )
    assert code == 0
    report = json.loads(capsys.readouterr().out)
    assert report["namespace"] == "shop.orders"
    assert report["results"][0]["rawCommand"]["sampleSize"] == 2000


def test_cli_rejects_bad_arguments() -> None:
    with pytest.raises(SystemExit):
        cli.main(["analyze", "orders", "--key", '{"a": 1}'])
    with pytest.raises(SystemExit):
        cli.main(["analyze", "shop.orders", "--key", '{"a": 5}'])
    with pytest.raises(SystemExit):
        cli.main(["workload", "shop.orders", "--duration", "5"], gateway=FakeGateway())


def test_cli_reports_missing_connection(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.delenv("SHARDKEY_ADVISOR_URI", raising=False)
    assert cli.main(["suggest", "shop.orders"]) == 2
    assert "Not connected" in capsys.readouterr().err


def test_cli_sampling_start(capsys: pytest.CaptureFixture[str]) -> None:
    gateway = FakeGateway()
    assert cli.main(["sampling", "start", "shop.orders", "--rate", "5"], gateway=gateway) == 0
    assert gateway.closed
    state = json.loads(capsys.readouterr().out)
    assert state["isActive"] is True
    assert gateway.commands[0]["samplesPerSecond"] == 5


def test_cli_closes_connection_after_errors() -> None:
    gateway = FakeGateway(on_command=failing_command("not authorized"))
    assert cli.main(["sampling", "start", "shop.orders"], gateway=gateway) == 2
    assert gateway.closed
