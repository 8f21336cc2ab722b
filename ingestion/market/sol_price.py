"""
ingestion/market/sol_price.py

SOL/USD reference price read from a Meteora SOL/USDC DLMM pool.

Graceful Degradation:
- Any RPC/decode failure or an unusable mid -> fallback constant
"""
import logging
import math

from ingestion.dex.meteora.pool import DlmmPool

logger = logging.getLogger(__name__)


SOL_MINT = "So11111111111111111111111111111111111111112"
SOL_USDC_POOL = "5rCf1DM8LjKTw4YqhnoLcngyZYeNnQqztScTogYHAS6"
DEFAULT_SOL_USD_FALLBACK = 195.0


def fetch_sol_usd(
    rpc,
    pool_address: str = SOL_USDC_POOL,
    fallback: float = DEFAULT_SOL_USD_FALLBACK,
    decimals_override=None,
    sol_mint: str = SOL_MINT,
    pool_factory=DlmmPool.create,
) -> float:
    """
    Mid price of SOL in USD from the active bin of a SOL/USDC pool.

    Args:
        rpc: SolanaRpcClient
        pool_address: Reference SOL/USDC pool
        fallback: Value returned on any failure
        decimals_override: Optional mint -> decimals map
        sol_mint: SOL mint; the price is inverted when it is token Y
        pool_factory: Pool loader (DlmmPool.create)

    Returns:
        SOL/USD price, or fallback
    """
    try:
        pool = pool_factory(rpc, pool_address, decimals_override=decimals_override)
        mid = float(pool.get_active_bin().price_per_token)
        if pool.lb_pair.token_y_mint == sol_mint and mid > 0:
            mid = 1.0 / mid
        if not math.isfinite(mid) or mid <= 0:
            raise ValueError(f"Invalid mid from SOL/USDC pool: {mid}")
        logger.debug(f"[sol_price] SOL/USD={mid:.4f} from {pool_address[:8]}...")
        return mid
    except Exception as e:
        logger.warning(f"[sol_price] Falling back to {fallback}: {e}")
        return fallback
