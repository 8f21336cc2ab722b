"""
ingestion/market package

Reference prices (SOL/USD).
"""
from .sol_price import DEFAULT_SOL_USD_FALLBACK, SOL_USDC_POOL, fetch_sol_usd

__all__ = [
    'fetch_sol_usd',
    'SOL_USDC_POOL',
    'DEFAULT_SOL_USD_FALLBACK',
]
