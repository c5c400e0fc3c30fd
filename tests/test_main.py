import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from lpstats.main import get_config, main, stats_to_dict
from lpstats.models import EventKind

from conftest import Q96, FakeChain, raw_event
from test_stats import make_service


@pytest.fixture
def stats(position, usdc, weth):
    chain = FakeChain(
        position=position,
        tokens=[usdc, weth],
        sqrt_prices={100: Q96},
        events={
            EventKind.INCREASE: [raw_event(EventKind.INCREASE, 100, 500, 500, liquidity=1000)],
        },
    )
    return asyncio.run(make_service(chain).get_position_stats(1))


def test_get_config():
    config = get_config(["42", "--no-range-logs", "--json", "--max-concurrency", "4"])

    assert config["position_id"] == 42
    assert config["supports_range_logs"] is False
    assert config["json"] is True
    assert config["max_concurrency"] == 4


def test_stats_to_dict(stats):
    rendered = stats_to_dict(stats)

    assert rendered["position_id"] == 1
    assert rendered["deposited"] == "0.0005 USDC 0.0000000000000005 WETH"
    assert rendered["date_closed"] is None
    assert rendered["days_held"] == 10.0
    assert rendered["apr"] == ["73.00%", "146.00%"]


def test_main_prints_json(stats, capsys):
    with patch("lpstats.main.run", new=AsyncMock(return_value=stats)):
        assert main(["1", "--json"]) == 0

    output = json.loads(capsys.readouterr().out)
    assert output["position_id"] == 1
    assert output["in_range"] is True


def test_main_reports_failure(capsys):
    with patch("lpstats.main.run", new=AsyncMock(side_effect=ConnectionError("rpc down"))):
        assert main(["1"]) == 1

    assert capsys.readouterr().out == ""
