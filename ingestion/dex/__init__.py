"""
ingestion/dex package

DEX integration (Meteora DLMM).
"""
from .models import ActiveBin, SwapQuote, SwapQuoteExactOut

__all__ = [
    'ActiveBin',
    'SwapQuote',
    'SwapQuoteExactOut',
]
