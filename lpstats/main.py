"""
Command line entry point: print statistics for one liquidity position.
"""
import sys
import json
import asyncio
import logging
import argparse
from typing import Any, Dict, Optional

from lpstats.models import PositionStats, Price, TokenAmountPair
from lpstats.repositories.chain import Web3ChainData
from lpstats.services.stats import PositionStatsService
from lpstats.utils.cache import RequestCache
from lpstats.utils.env import (
    CACHE_PATH,
    LOG_LEVEL,
    MAX_CONCURRENT_REQUESTS,
    RPC_URL,
    SUPPORTS_RANGE_LOGS,
)
from lpstats.utils.web3 import AsyncWeb3Helper

logger = logging.getLogger(__name__)


def get_config(argv=None) -> Dict[str, Any]:
    """Load configuration from environment and arguments."""
    parser = argparse.ArgumentParser(description='Uniswap V3 liquidity position statistics')

    parser.add_argument('position_id', type=int, help='Position NFT id')
    parser.add_argument('--rpc-url', type=str, default=RPC_URL, help='JSON-RPC endpoint')
    parser.add_argument(
        '--no-range-logs',
        action='store_true',
        help='The endpoint cannot scan logs over an unbounded range; discover active blocks instead',
    )
    parser.add_argument('--cache', type=str, default=CACHE_PATH, help='JSON file persisting the request cache')
    parser.add_argument('--max-concurrency', type=int, default=MAX_CONCURRENT_REQUESTS, help='Concurrent RPC requests')
    parser.add_argument('--json', action='store_true', help='Print statistics as JSON')

    args = parser.parse_args(argv)

    return {
        'position_id': args.position_id,
        'rpc_url': args.rpc_url,
        'supports_range_logs': SUPPORTS_RANGE_LOGS and not args.no_range_logs,
        'cache_path': args.cache,
        'max_concurrency': args.max_concurrency,
        'json': args.json,
    }


def _price(price: Optional[Price]) -> Optional[str]:
    return str(price) if price is not None else None


def _amounts(amounts: Optional[TokenAmountPair]) -> Optional[str]:
    return str(amounts) if amounts is not None else None


def stats_to_dict(stats: PositionStats) -> Dict[str, Any]:
    """Human-readable rendering of a PositionStats record."""
    return {
        'position_id': stats.position_id,
        'owner': stats.owner,
        'pool': stats.pool_address,
        'range': f"{stats.lower_tick_price.to_significant()} - {stats.upper_tick_price}",
        'current_price': _price(stats.current_price),
        'in_range': stats.in_range,
        'current': _amounts(stats.current),
        'uncollected': _amounts(stats.uncollected),
        'deposited': _amounts(stats.deposited),
        'avg_deposit_price': _price(stats.avg_deposit_price),
        'withdrawn': _amounts(stats.withdrawn),
        'avg_withdrawn_price': _price(stats.avg_withdrawn_price),
        'collected': _amounts(stats.collected),
        'avg_collected_price': _price(stats.avg_collected_price),
        'date_opened': stats.date_opened.isoformat() if stats.date_opened else None,
        'date_closed': stats.date_closed.isoformat() if stats.date_closed else None,
        'days_held': (
            round(stats.duration_position_held.total_seconds() / 86400, 2)
            if stats.duration_position_held is not None
            else None
        ),
        'total_yield': _amounts(stats.total_yield),
        'avg_yield_price': _price(stats.avg_yield_price),
        'yield_per_day': _amounts(stats.yield_per_day),
        'apr': [
            f"{float(apr) * 100:.2f}%" if apr is not None else None
            for apr in stats.apr
        ],
    }


async def run(config: Dict[str, Any]) -> PositionStats:
    cache = RequestCache()
    if config['cache_path']:
        cache.load(config['cache_path'])

    chain = Web3ChainData(
        AsyncWeb3Helper.make_web3(config['rpc_url']),
        supports_range_queries=config['supports_range_logs'],
        cache=cache,
    )
    service = PositionStatsService.from_chain(chain, max_concurrency=config['max_concurrency'])
    try:
        return await service.get_position_stats(config['position_id'])
    finally:
        if config['cache_path']:
            cache.save(config['cache_path'])


def main(argv=None) -> int:
    # Configure logging
    logging.basicConfig(
        level=getattr(logging, str(LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    config = get_config(argv)
    logger.info(f"Computing statistics for position {config['position_id']}")

    try:
        stats = asyncio.run(run(config))
    except Exception as e:
        logger.error(f"Failed to compute statistics for position {config['position_id']}: {e}")
        return 1

    rendered = stats_to_dict(stats)
    if config['json']:
        print(json.dumps(rendered, indent=2))
    else:
        width = max(len(key) for key in rendered)
        for key, value in rendered.items():
            print(f"{key.ljust(width)}  {value if value is not None else '-'}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
