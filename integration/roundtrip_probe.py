"""integration/roundtrip_probe.py

Round-trip cost probe for one Meteora DLMM pool.

Flow:
1. Resolve base/quote roles, decimals, active-bin mid and USD reference price.
2. Fetch bin arrays for both swap directions.
3. Per USD size: exact-in buy quote, exact-out sell quote, round-trip bps,
   console line, optional CSV row; fixed pause after every size.
"""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, TextIO

from config.probe_config import ProbeConfig
from ingestion.dex.meteora.pool import BinArrayAccount, DlmmPool
from ingestion.dex.models import ActiveBin
from integration.roundtrip_csv import RoundtripCsvWriter
from strategy.roundtrip import (
    RoundtripResult,
    estimate_roundtrip,
    fee_bps_total,
    mid_usd_per_base,
)

logger = logging.getLogger(__name__)


DEX_NAME = "meteora"
MIN_BIN_ARRAYS = 2


@dataclass
class PoolContext:
    """Everything about the pool that stays fixed for the whole run."""
    pool: str
    program_id: str
    bin_step: int
    token_x: str
    token_y: str
    decimals_x: int
    decimals_y: int
    quote_mint: str
    base_mint: str
    quote_decimals: int
    base_decimals: int
    is_quote_x: bool
    active_bin: ActiveBin
    raw_mid: float               # Y atoms per X atom
    adjusted_mid: float          # whole Y per whole X
    usd_per_quote: float
    mid_usd_per_base: float
    base_fee_bps_leg: float
    dyn_fee_bps_leg: float
    fee_bps_total: float
    protocol_share_bps: int
    symbols: Dict[str, str] = field(default_factory=dict)

    @property
    def buy_swap_for_y(self) -> bool:
        """Buying base spends quote: X -> Y when quote is X."""
        return self.is_quote_x

    @property
    def sell_swap_for_y(self) -> bool:
        return not self.is_quote_x

    def symbol(self, mint: str) -> str:
        return self.symbols.get(mint, "")


def build_pool_context(
    pool: DlmmPool,
    quote_mint: str,
    config: ProbeConfig,
    dynamic_fee_pct: float = 0.0,
    sol_usd_fn: Optional[Callable[[], float]] = None,
) -> PoolContext:
    """
    Resolve roles and prices for a probe run.

    Args:
        pool: Loaded DlmmPool
        quote_mint: Quote token of the pool (USDC or SOL)
        config: Probe configuration (tables, pinned fees)
        dynamic_fee_pct: Dynamic fee per leg, percent
        sol_usd_fn: SOL/USD source, called only for SOL-quoted pools

    Raises:
        ValueError: quote_mint is not one of the pool's tokens
    """
    lb_pair = pool.lb_pair
    token_x, token_y = lb_pair.token_x_mint, lb_pair.token_y_mint
    if quote_mint not in (token_x, token_y):
        raise ValueError(f"Quote mint {quote_mint} is not a token of pool {pool.pubkey}")

    is_quote_x = token_x == quote_mint
    base_mint = token_y if is_quote_x else token_x
    quote_decimals = pool.decimals_x if is_quote_x else pool.decimals_y
    base_decimals = pool.decimals_y if is_quote_x else pool.decimals_x

    if not lb_pair.is_enabled:
        logger.warning(f"[probe] Pool {pool.pubkey[:8]}... is disabled (status={lb_pair.status}), quotes may not be executable")

    active_bin = pool.get_active_bin()
    adjusted_mid = float(active_bin.price_per_token)

    if quote_mint == config.usdc_mint:
        usd_per_quote = 1.0
    elif quote_mint == config.sol_mint:
        if sol_usd_fn is None:
            raise ValueError("SOL-quoted pool needs a SOL/USD price source")
        usd_per_quote = float(sol_usd_fn())
    else:
        logger.info(f"[probe] Quote mint {quote_mint[:8]}... treated as USD-pegged")
        usd_per_quote = 1.0

    base_fee = config.pinned_fee_for(pool.pubkey)
    dyn_fee = dynamic_fee_pct * 100

    return PoolContext(
        pool=pool.pubkey,
        program_id=pool.program_id,
        bin_step=lb_pair.bin_step,
        token_x=token_x,
        token_y=token_y,
        decimals_x=pool.decimals_x,
        decimals_y=pool.decimals_y,
        quote_mint=quote_mint,
        base_mint=base_mint,
        quote_decimals=quote_decimals,
        base_decimals=base_decimals,
        is_quote_x=is_quote_x,
        active_bin=active_bin,
        raw_mid=float(active_bin.price),
        adjusted_mid=adjusted_mid,
        usd_per_quote=usd_per_quote,
        mid_usd_per_base=mid_usd_per_base(adjusted_mid, not is_quote_x, usd_per_quote),
        base_fee_bps_leg=base_fee,
        dyn_fee_bps_leg=dyn_fee,
        fee_bps_total=fee_bps_total(base_fee, dynamic_fee_pct),
        protocol_share_bps=lb_pair.parameters.protocol_share,
        symbols={mint: config.symbol_for(mint) for mint in (token_x, token_y)},
    )


def fmt_usd(n: float) -> str:
    text = f"{n:,.6f}".rstrip("0").rstrip(".")
    return f"${text}"


def csv_row(ctx: PoolContext, result: RoundtripResult, ts_utc: str) -> Dict[str, Any]:
    """One CSV row in RoundtripCsvWriter column order."""
    per_leg_bps = ctx.base_fee_bps_leg + ctx.dyn_fee_bps_leg
    return {
        "ts_utc": ts_utc,
        "dex": DEX_NAME,
        "pool": ctx.pool,
        "program_id": ctx.program_id,
        "tick_spacing": ctx.bin_step,
        "fee_ppm": f"{per_leg_bps * 100:.0f}",
        "fee_bps": ctx.fee_bps_total,
        "protocol_fee_ppm": ctx.protocol_share_bps * 100,
        "base_fee_bps_leg": ctx.base_fee_bps_leg,
        "dyn_fee_bps_leg": ctx.dyn_fee_bps_leg,
        "liquidity_u128": ctx.active_bin.supply,
        "sqrt_price_x64": None,
        "tick_current": ctx.active_bin.bin_id,
        "mintA": ctx.token_x,
        "decA": ctx.decimals_x,
        "symbolA": ctx.symbol(ctx.token_x),
        "mintB": ctx.token_y,
        "decB": ctx.decimals_y,
        "symbolB": ctx.symbol(ctx.token_y),
        "base_mint": ctx.base_mint,
        "base_decimals": ctx.base_decimals,
        "base_symbol": ctx.symbol(ctx.base_mint),
        "quote_mint": ctx.quote_mint,
        "quote_decimals": ctx.quote_decimals,
        "quote_symbol": ctx.symbol(ctx.quote_mint),
        "usd_per_quote": ctx.usd_per_quote,
        "mid_usd_per_base": result.mid_usd_per_base,
        "usd_notional": result.usd_notional,
        "buy_px_usd_per_base": result.buy_px_usd_per_base,
        "sell_px_usd_per_base": result.sell_px_usd_per_base,
        "roundtrip_bps": result.roundtrip_bps,
        "fee_bps_total": result.fee_bps_total,
        "impact_bps_total": result.impact_bps,
        "buy_out_base": result.buy_out_base,
        "sell_in_base": result.sell_in_base,
        "buy_fee_quote": result.buy_fee_quote,
        "sell_fee_base": result.sell_fee_base,
    }


class RoundtripProbe:
    """Sequential round-trip probe over a list of USD sizes."""

    def __init__(
        self,
        pool: DlmmPool,
        ctx: PoolContext,
        config: ProbeConfig,
        coverage: Optional[int] = None,
        csv_writer: Optional[RoundtripCsvWriter] = None,
        out: Optional[TextIO] = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.pool = pool
        self.ctx = ctx
        self.config = config
        self.coverage = max(MIN_BIN_ARRAYS, coverage if coverage is not None else config.coverage)
        self.csv_writer = csv_writer
        self._out = out
        self._sleep = sleep
        self._now = now
        self.buy_bin_arrays: List[BinArrayAccount] = []
        self.sell_bin_arrays: List[BinArrayAccount] = []
        self.errors: List[Dict[str, Any]] = []

    def _print(self, line: str = "") -> None:
        print(line, file=self._out or sys.stdout)

    def load_bin_arrays(self) -> None:
        self.buy_bin_arrays = self.pool.get_bin_array_for_swap(self.ctx.buy_swap_for_y, self.coverage)
        self.sell_bin_arrays = self.pool.get_bin_array_for_swap(self.ctx.sell_swap_for_y, self.coverage)
        logger.info(
            f"[probe] Bin arrays: buy={len(self.buy_bin_arrays)} sell={len(self.sell_bin_arrays)} (coverage={self.coverage})"
        )

    def print_summary(self) -> None:
        ctx = self.ctx
        self._print("Pool Summary")
        self._print("------------")
        self._print(f"Pool:                 {ctx.pool}")
        self._print(f"Program:              {ctx.program_id}")
        self._print(f"tokenX:               {ctx.token_x} (dec={ctx.decimals_x})")
        self._print(f"tokenY:               {ctx.token_y} (dec={ctx.decimals_y})")
        self._print(f"quoteMint:            {ctx.quote_mint} (dec={ctx.quote_decimals})")
        self._print(f"baseMint:             {ctx.base_mint} (dec={ctx.base_decimals})")
        self._print(f"binStep:              {ctx.bin_step}")
        self._print(
            f"mid USD/BASE:         {ctx.mid_usd_per_base:.2f}  "
            f"(rawMid={ctx.raw_mid:.6g}, adjusted={ctx.adjusted_mid:.6g})"
        )
        self._print(f"fee bps (roundtrip):  {ctx.fee_bps_total:.4f}")
        self._print()
        self._print("Roundtrip results (USD-sized):")
        self._print("  Notional      Mid(USD/BASE)   BuyPx       SellPx      RT bps   Fee bps   Impact bps")

    def _buy(self, quote_atoms: int):
        return self.pool.swap_quote(
            quote_atoms,
            self.ctx.buy_swap_for_y,
            self.config.slippage_bps,
            self.buy_bin_arrays,
            False,
            self.config.max_extra_bin_arrays,
        )

    def _sell(self, quote_atoms: int):
        return self.pool.swap_quote_exact_out(
            quote_atoms,
            self.ctx.sell_swap_for_y,
            self.config.slippage_bps,
            self.sell_bin_arrays,
            self.config.max_extra_bin_arrays,
        )

    def probe_size(self, usd: float) -> RoundtripResult:
        return estimate_roundtrip(
            usd=usd,
            usd_per_quote=self.ctx.usd_per_quote,
            mid_px=self.ctx.mid_usd_per_base,
            quote_decimals=self.ctx.quote_decimals,
            base_decimals=self.ctx.base_decimals,
            fees_bps=self.ctx.fee_bps_total,
            buy_exact_in=self._buy,
            sell_exact_out=self._sell,
        )

    def run(self, sizes_usd: List[float]) -> List[RoundtripResult]:
        """Probe every size; a failing size is logged and skipped."""
        results: List[RoundtripResult] = []
        delay_s = self.config.request_delay_ms / 1000.0

        for usd in sizes_usd:
            try:
                result = self.probe_size(usd)
                results.append(result)
                self._print(
                    f"RT {fmt_usd(usd):>8}  mid={result.mid_usd_per_base:.2f}  "
                    f"buy={result.buy_px_usd_per_base:.2f}  sell={result.sell_px_usd_per_base:.2f}  "
                    f"rt={result.roundtrip_bps:.4f}bps  fee={result.fee_bps_total:.4f}bps  "
                    f"impact={result.impact_bps:.4f}bps"
                )
                if self.csv_writer is not None:
                    ts_utc = self._now().isoformat(timespec="milliseconds").replace("+00:00", "Z")
                    self.csv_writer.write_row(csv_row(self.ctx, result, ts_utc))
            except Exception as e:
                logger.error(f"[ERROR size={usd:g}] {e}")
                self.errors.append({"usd": usd, "error": str(e)})
            self._sleep(delay_s)

        return results
