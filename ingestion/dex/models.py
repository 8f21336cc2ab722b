"""
ingestion/dex/models.py

DLMM quote and active-bin result models.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List


@dataclass
class ActiveBin:
    """Snapshot of the pool's active bin."""
    bin_id: int
    x_amount: int
    y_amount: int
    supply: int
    price: Decimal               # Y atoms per X atom
    price_per_token: Decimal     # whole Y per whole X

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bin_id": self.bin_id,
            "x_amount": self.x_amount,
            "y_amount": self.y_amount,
            "supply": str(self.supply),
            "price": str(self.price),
            "price_per_token": str(self.price_per_token),
        }


@dataclass
class SwapQuote:
    """
    Exact-input quote.

    Amounts are atomic units: consumed_in_amount and fee in the input token,
    out_amount and min_out_amount in the output token.
    """
    consumed_in_amount: int
    out_amount: int
    fee: int
    protocol_fee: int
    min_out_amount: int
    price_impact_pct: Decimal
    end_price: Decimal
    bin_arrays_pubkey: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "consumed_in_amount": self.consumed_in_amount,
            "out_amount": self.out_amount,
            "fee": self.fee,
            "protocol_fee": self.protocol_fee,
            "min_out_amount": self.min_out_amount,
            "price_impact_pct": str(self.price_impact_pct),
            "end_price": str(self.end_price),
            "bin_arrays_pubkey": list(self.bin_arrays_pubkey),
        }


@dataclass
class SwapQuoteExactOut:
    """
    Exact-output quote.

    in_amount, fee and max_in_amount are in the input token, out_amount in
    the output token (atomic units).
    """
    in_amount: int
    out_amount: int
    fee: int
    protocol_fee: int
    max_in_amount: int
    price_impact_pct: Decimal
    bin_arrays_pubkey: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "in_amount": self.in_amount,
            "out_amount": self.out_amount,
            "fee": self.fee,
            "protocol_fee": self.protocol_fee,
            "max_in_amount": self.max_in_amount,
            "price_impact_pct": str(self.price_impact_pct),
            "bin_arrays_pubkey": list(self.bin_arrays_pubkey),
        }
