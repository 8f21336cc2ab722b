"""integration/roundtrip_csv.py

Append-only CSV log of round-trip probe rows.

The header is written only when the file is absent or empty, so repeated
runs can append to the same file.
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Any, Dict, Optional, TextIO

logger = logging.getLogger(__name__)


CSV_COLUMNS = (
    "ts_utc",
    "dex",
    "pool",
    "program_id",
    "tick_spacing",
    "fee_ppm",
    "fee_bps",
    "protocol_fee_ppm",
    "base_fee_bps_leg",
    "dyn_fee_bps_leg",
    "liquidity_u128",
    "sqrt_price_x64",
    "tick_current",
    "mintA",
    "decA",
    "symbolA",
    "mintB",
    "decB",
    "symbolB",
    "base_mint",
    "base_decimals",
    "base_symbol",
    "quote_mint",
    "quote_decimals",
    "quote_symbol",
    "usd_per_quote",
    "mid_usd_per_base",
    "usd_notional",
    "buy_px_usd_per_base",
    "sell_px_usd_per_base",
    "roundtrip_bps",
    "fee_bps_total",
    "impact_bps_total",
    "buy_out_base",
    "sell_in_base",
    "buy_fee_quote",
    "sell_fee_base",
)


def _cell(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


class RoundtripCsvWriter:
    """Opens the target once in append mode; close() when the run ends."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._fh: Optional[TextIO] = None
        self._writer: Optional[csv.DictWriter] = None
        self.rows_written = 0

    def open(self) -> "RoundtripCsvWriter":
        need_header = not self.path.exists() or self.path.stat().st_size == 0
        if self.path.parent and not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)

        self._fh = open(self.path, "a", newline="", encoding="utf-8")
        self._writer = csv.DictWriter(self._fh, fieldnames=CSV_COLUMNS, lineterminator="\n")
        if need_header:
            self._writer.writeheader()
            logger.debug(f"[csv] Wrote header to {self.path}")
        return self

    def write_row(self, row: Dict[str, Any]) -> None:
        if self._writer is None:
            raise RuntimeError("RoundtripCsvWriter.open() must be called first")
        unknown = set(row) - set(CSV_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown CSV columns: {sorted(unknown)}")
        self._writer.writerow({col: _cell(row.get(col)) for col in CSV_COLUMNS})
        self._fh.flush()
        self.rows_written += 1

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            logger.debug(f"[csv] Closed {self.path} ({self.rows_written} rows)")
        self._fh = None
        self._writer = None

    def __enter__(self) -> "RoundtripCsvWriter":
        return self.open()

    def __exit__(self, *exc: Any) -> None:
        self.close()
