from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

import lpstats.repositories.chain as chain_module
from lpstats.models import EventKind
from lpstats.repositories.chain import Web3ChainData
from lpstats.utils.cache import RequestCache
from lpstats.utils.web3 import MAX_UINT128, ZERO_ADDRESS

from conftest import OWNER_ADDR, POOL_ADDR, USDC_ADDR, WETH_ADDR

POSITION_INFO = (0, ZERO_ADDRESS, USDC_ADDR, WETH_ADDR, 500, -600, 600, 1000, 0, 0, 0, 0)


@pytest.fixture
def contracts():
    return {
        "NonfungiblePositionManager": MagicMock(),
        "UniswapV3Factory": MagicMock(),
        "UniswapV3Pool": MagicMock(),
        "ERC20": MagicMock(),
    }


@pytest.fixture
def helper(contracts):
    helper = MagicMock()
    helper.make_contract_by_name.side_effect = lambda name, addr: contracts[name]
    return helper


@pytest.fixture
def chain(helper):
    return Web3ChainData(helper, supports_range_queries=True, cache=RequestCache())


@pytest.fixture(autouse=True)
def no_retry_delay(monkeypatch):
    monkeypatch.setattr(chain_module, "RETRY_DELAY_BASE", 0)


def mock_contract_call(contract_function_mock, return_value):
    """Helper to mock a contract function call: contract.functions.func().call() -> return_value"""
    method_obj = MagicMock()
    contract_function_mock.return_value = method_obj
    method_obj.call = AsyncMock(return_value=return_value)
    return method_obj.call


async def _value(value):
    return value


@pytest.mark.asyncio
async def test_get_position(chain, contracts):
    npm = contracts["NonfungiblePositionManager"]
    mock_contract_call(npm.functions.positions, POSITION_INFO)
    mock_contract_call(npm.functions.ownerOf, OWNER_ADDR)
    collect_call = mock_contract_call(npm.functions.collect, [10, 20])

    position = await chain.get_position(1)

    assert position.owner == OWNER_ADDR
    assert (position.token0, position.token1, position.fee) == (USDC_ADDR, WETH_ADDR, 500)
    assert (position.tick_lower, position.tick_upper, position.liquidity) == (-600, 600, 1000)
    assert (position.uncollected0, position.uncollected1) == (10, 20)

    # Fees are read by simulating a full collect from the owner
    npm.functions.collect.assert_called_once_with((1, OWNER_ADDR, MAX_UINT128, MAX_UINT128))
    collect_call.assert_awaited_once_with({"from": OWNER_ADDR})


@pytest.mark.asyncio
async def test_query_events_parses_logs(chain, contracts):
    npm = contracts["NonfungiblePositionManager"]
    log = {
        "args": {"tokenId": 1, "liquidity": 1000, "amount0": 500, "amount1": 600},
        "blockNumber": 100,
        "logIndex": 3,
        "transactionHash": bytes.fromhex("ab" * 32),
    }
    get_logs = AsyncMock(return_value=[log])
    npm.events.IncreaseLiquidity.return_value.get_logs = get_logs

    events = await chain.query_events(EventKind.INCREASE, 1, 0, "latest")

    assert events == [
        {
            "kind": "IncreaseLiquidity",
            "block_number": 100,
            "log_index": 3,
            "transaction_hash": "0x" + "ab" * 32,
            "token_id": 1,
            "liquidity": 1000,
            "amount0": 500,
            "amount1": 600,
        }
    ]
    get_logs.assert_awaited_once_with(
        argument_filters={"tokenId": 1}, from_block=0, to_block="latest"
    )


@pytest.mark.asyncio
async def test_collect_logs_have_no_liquidity(chain, contracts):
    npm = contracts["NonfungiblePositionManager"]
    log = {
        "args": {"tokenId": 1, "recipient": OWNER_ADDR, "amount0": 5, "amount1": 6},
        "blockNumber": 100,
        "logIndex": 0,
        "transactionHash": bytes.fromhex("cd" * 32),
    }
    npm.events.Collect.return_value.get_logs = AsyncMock(return_value=[log])

    events = await chain.query_events(EventKind.COLLECT, 1, 100, 100)

    assert events[0]["liquidity"] is None


@pytest.mark.asyncio
async def test_get_pool_address(chain, contracts):
    get_pool = mock_contract_call(contracts["UniswapV3Factory"].functions.getPool, POOL_ADDR)

    assert await chain.get_pool_address(USDC_ADDR, WETH_ADDR, 500) == POOL_ADDR
    assert await chain.get_pool_address(USDC_ADDR.lower(), WETH_ADDR.lower(), 500) == POOL_ADDR
    assert get_pool.await_count == 1


@pytest.mark.asyncio
async def test_missing_pool(chain, contracts):
    mock_contract_call(contracts["UniswapV3Factory"].functions.getPool, ZERO_ADDRESS)

    with pytest.raises(ValueError):
        await chain.get_pool_address(USDC_ADDR, WETH_ADDR, 500)


@pytest.mark.asyncio
async def test_only_pinned_prices_are_cached(chain, contracts):
    slot0 = mock_contract_call(
        contracts["UniswapV3Pool"].functions.slot0, (1 << 96, 0, 0, 0, 0, 0, True)
    )

    assert await chain.get_sqrt_price(POOL_ADDR, 100) == 1 << 96
    assert await chain.get_sqrt_price(POOL_ADDR, 100) == 1 << 96
    assert slot0.await_count == 1
    slot0.assert_awaited_with(block_identifier=100)

    await chain.get_sqrt_price(POOL_ADDR)
    await chain.get_sqrt_price(POOL_ADDR)
    assert slot0.await_count == 3
    slot0.assert_awaited_with(block_identifier="latest")


@pytest.mark.asyncio
async def test_get_token(chain, contracts, helper):
    erc20 = contracts["ERC20"]
    mock_contract_call(erc20.functions.decimals, 6)
    mock_contract_call(erc20.functions.symbol, "USDC")
    mock_contract_call(erc20.functions.name, "USD Coin")
    helper.web3.eth.chain_id = _value(1)

    token = await chain.get_token(USDC_ADDR.lower())
    again = await chain.get_token(USDC_ADDR)

    assert token.address == USDC_ADDR
    assert (token.chain_id, token.decimals, token.symbol) == (1, 6, "USDC")
    assert again == token
    assert erc20.functions.decimals.return_value.call.await_count == 1


@pytest.mark.asyncio
async def test_get_block_timestamp(chain, helper):
    helper.web3.eth.get_block = AsyncMock(return_value={"timestamp": 1700000000})

    timestamp = await chain.get_block_timestamp(100)

    assert timestamp == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_transient_errors_are_retried(chain, helper):
    helper.web3.eth.get_transaction_count = AsyncMock(side_effect=[ConnectionError("reset"), 7])

    assert await chain.get_transaction_count(OWNER_ADDR, 100) == 7
    assert helper.web3.eth.get_transaction_count.await_count == 2


@pytest.mark.asyncio
async def test_retries_exhausted(chain, helper):
    helper.web3.eth.get_transaction_count = AsyncMock(side_effect=ConnectionError("reset"))

    with pytest.raises(ConnectionError):
        await chain.get_transaction_count(OWNER_ADDR, 100)
    assert helper.web3.eth.get_transaction_count.await_count == chain_module.MAX_RETRIES


@pytest.mark.asyncio
async def test_other_errors_are_not_retried(chain, helper):
    helper.web3.eth.get_transaction_count = AsyncMock(side_effect=ValueError("execution reverted"))

    with pytest.raises(ValueError):
        await chain.get_transaction_count(OWNER_ADDR, 100)
    assert helper.web3.eth.get_transaction_count.await_count == 1
