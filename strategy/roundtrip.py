"""
Round-trip cost math for DLMM probes.

Pure functions: trade-size parsing, atomic unit conversion, and the
buy/sell/impact/fee arithmetic of one round trip.
No external dependencies, no I/O.
"""

import math
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional


BPS = 10_000.0


def parse_sizes(sizes_arg: str) -> List[float]:
    """
    Parse USD trade sizes.

    Formats:
        "a:b:s"      -> a, a+s, ... up to and including b
        "10,25,50"   -> [10, 25, 50] (non-finite / non-positive entries dropped)
        "100"        -> [100]

    Raises:
        ValueError: Malformed range (non-finite, s <= 0, b < a) or unsupported format
    """
    text = sizes_arg.strip()

    if ":" in text:
        parts = text.split(":")
        if len(parts) != 3:
            raise ValueError(f"Bad --sizes A:B:S: {sizes_arg!r}")
        a, b, s = (_to_float(p) for p in parts)
        if not all(math.isfinite(v) for v in (a, b, s)) or s <= 0 or b < a:
            raise ValueError(f"Bad --sizes A:B:S: {sizes_arg!r}")
        out: List[float] = []
        i = 0
        # Tolerance keeps the end point when a + i*s lands a hair above b
        while a + i * s <= b + s * 1e-9:
            out.append(a + i * s)
            i += 1
        return out

    if "," in text:
        values = [_to_float(x) for x in text.split(",")]
        out = [v for v in values if math.isfinite(v) and v > 0]
        if not out:
            raise ValueError(f"No valid sizes in: {sizes_arg!r}")
        return out

    single = _to_float(text)
    if math.isfinite(single) and single > 0:
        return [single]
    raise ValueError(f'Unsupported --sizes format: "{sizes_arg}"')


def _to_float(raw: str) -> float:
    try:
        return float(raw.strip())
    except ValueError:
        return float("nan")


def to_atomic(amount: float, decimals: int) -> int:
    """Decimal amount -> smallest-unit integer, rounded at `decimals` places."""
    if decimals < 0:
        raise ValueError("decimals must be non-negative")
    return int(f"{amount:.{decimals}f}".replace(".", ""))


def from_atomic(amount: Any, decimals: int) -> float:
    """Smallest-unit integer (int, str or Decimal) -> decimal amount."""
    return float(Decimal(int(amount)).scaleb(-decimals))


def to_bps(x: float) -> float:
    return x * BPS


def impact_bps(buy_px: float, sell_px: float, mid_px: float) -> float:
    """Buy/sell execution price spread relative to mid, in bps."""
    if mid_px <= 0:
        raise ValueError("mid price must be positive")
    return to_bps((buy_px - sell_px) / mid_px)


def fee_bps_total(pinned_fee_bps: float, dynamic_fee_pct: float) -> float:
    """Two legs of (pinned base fee + dynamic fee), in bps."""
    return 2 * (pinned_fee_bps + dynamic_fee_pct * 100)


def roundtrip_bps(impact: float, fees: float) -> float:
    return impact + fees


def quote_per_base(price_x_in_y: float, base_is_x: bool) -> float:
    """Orient the pool price (whole Y per whole X) to quote per base."""
    if base_is_x:
        return price_x_in_y
    if price_x_in_y <= 0:
        raise ValueError("pool price must be positive")
    return 1.0 / price_x_in_y


def mid_usd_per_base(price_x_in_y: float, base_is_x: bool, usd_per_quote: float) -> float:
    return quote_per_base(price_x_in_y, base_is_x) * usd_per_quote


@dataclass
class RoundtripResult:
    """One trade size worth of round-trip numbers."""
    usd_notional: float
    mid_usd_per_base: float
    buy_px_usd_per_base: float
    sell_px_usd_per_base: float
    fee_bps_total: float
    impact_bps: float
    roundtrip_bps: float
    buy_out_base: float
    sell_in_base: float
    buy_fee_quote: Optional[int] = None     # atomic quote units
    sell_fee_base: Optional[int] = None     # atomic base units

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def estimate_roundtrip(
    usd: float,
    usd_per_quote: float,
    mid_px: float,
    quote_decimals: int,
    base_decimals: int,
    fees_bps: float,
    buy_exact_in: Callable[[int], Any],
    sell_exact_out: Callable[[int], Any],
) -> RoundtripResult:
    """
    Round trip for one USD notional.

    Args:
        usd: Trade size in USD
        usd_per_quote: USD value of one quote token
        mid_px: Mid price of the base token in USD
        quote_decimals: Quote token decimals
        base_decimals: Base token decimals
        fees_bps: Static round-trip fee (fee_bps_total)
        buy_exact_in: quote atoms in -> quote with .out_amount (base atoms) and .fee
        sell_exact_out: quote atoms out -> quote with .in_amount (base atoms) and .fee

    Raises:
        ValueError: A quote returned zero base amount
    """
    quote_in = usd / usd_per_quote
    quote_atoms = to_atomic(quote_in, quote_decimals)

    buy_q = buy_exact_in(quote_atoms)
    buy_out_base = from_atomic(buy_q.out_amount, base_decimals)
    if buy_out_base <= 0:
        raise ValueError("buy quote returned zero output")
    buy_px = usd / buy_out_base

    sell_q = sell_exact_out(quote_atoms)
    sell_in_base = from_atomic(sell_q.in_amount, base_decimals)
    if sell_in_base <= 0:
        raise ValueError("sell quote returned zero input")
    sell_px = usd / sell_in_base

    impact = impact_bps(buy_px, sell_px, mid_px)
    return RoundtripResult(
        usd_notional=usd,
        mid_usd_per_base=mid_px,
        buy_px_usd_per_base=buy_px,
        sell_px_usd_per_base=sell_px,
        fee_bps_total=fees_bps,
        impact_bps=impact,
        roundtrip_bps=roundtrip_bps(impact, fees_bps),
        buy_out_base=buy_out_base,
        sell_in_base=sell_in_base,
        buy_fee_quote=buy_q.fee,
        sell_fee_base=sell_q.fee,
    )
