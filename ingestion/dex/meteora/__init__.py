"""
ingestion/dex/meteora package

Meteora DLMM account decoding, protocol math, and swap quotes.
"""
from .layouts import BinArrayState, BinState, LbPairState, PoolDecodeError
from .pool import (
    METEORA_DLMM_PROGRAM_ID,
    BinArrayAccount,
    DlmmPool,
    InsufficientLiquidityError,
)

__all__ = [
    'DlmmPool',
    'BinArrayAccount',
    'InsufficientLiquidityError',
    'METEORA_DLMM_PROGRAM_ID',
    'LbPairState',
    'BinArrayState',
    'BinState',
    'PoolDecodeError',
]
