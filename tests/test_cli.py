import json
from decimal import Decimal

import pytest

from treasury_api import cli
from treasury_api.runtime import TreasuryRuntime
from yield_adapters import MockYieldAdapter

from conftest import FakeChainReader


@pytest.fixture()
def fake_runtime(monkeypatch, settings, engine):
    def _factory():
        return TreasuryRuntime(
            settings,
            engine=engine,
            reader=FakeChainReader(cash_usdc=Decimal("25")),
            adapter=MockYieldAdapter(apy_percent=3.0),
        )

    monkeypatch.setattr(cli, "TreasuryRuntime", _factory)
    return settings


def test_rebalance_command_prints_decision(fake_runtime, capsys):
    assert cli.main(["rebalance", "--reason", "cron"]) == 0
    out = capsys.readouterr().out
    assert '"outcome": "deposited"' in out
    assert '"reason": "cron"' in out


def test_second_rebalance_respects_seeded_cooldown(fake_runtime, capsys):
    cli.main(["rebalance"])
    capsys.readouterr()
    assert cli.main(["rebalance"]) == 0
    assert '"outcome": "skipped_cooldown"' in capsys.readouterr().out


def test_balances_command(fake_runtime, capsys):
    assert cli.main(["balances"]) == 0
    assert '"cashBufferUsdc": 25.0' in capsys.readouterr().out


def test_missing_config_exits_2(fake_runtime, capsys):
    fake_runtime.merchant_address = None
    assert cli.main(["balances"]) == 2
    err = json.loads(capsys.readouterr().err)
    assert err == {"code": "CONFIG_MISSING", "missing": ["merchant_address"]}


def test_command_is_required():
    with pytest.raises(SystemExit):
        cli.parse_args([])
