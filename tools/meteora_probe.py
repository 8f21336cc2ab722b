#!/usr/bin/env python3
"""tools/meteora_probe.py

Round-trip cost probe for a Meteora DLMM pool.

Usage:
    python3 -m tools.meteora_probe \
        --pool 5rCf1DM8LjKTw4YqhnoLcngyZYeNnQqztScTogYHAS6 \
        --quoteMint EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v \
        --sizes 100:1000:100 \
        --csv out/roundtrip.csv

Arguments:
    --rpc: RPC endpoint (default: $SOLANA_RPC_URL or public mainnet)
    --pool: DLMM pool (LbPair) address
    --quoteMint: Quote token mint (USDC or SOL)
    --sizes: USD sizes, "10,25,50" or "a:b:s"
    --range: "a:b:s", overrides --sizes
    --coverage: Bin arrays fetched per swap direction (min 2)
    --dynamicFeePct: Dynamic fee per leg, percent
    --csv: Append one row per size to this CSV
    --config: YAML config (default: config/meteora_probe.yaml)
    --verbose: DEBUG logging

Pipeline:
    1. Load config, parse sizes (bad input exits before any RPC call)
    2. Load pool, resolve base/quote roles and USD mid
    3. For each size: exact-in buy + exact-out sell quote, print, write CSV row
"""

from __future__ import annotations

import argparse
import logging
import math
import sys
from typing import List, Optional

from config.probe_config import ConfigError, load_probe_config
from ingestion.dex.meteora.layouts import PoolDecodeError
from ingestion.dex.meteora.pool import DlmmPool
from ingestion.market.sol_price import fetch_sol_usd
from ingestion.rpc.client import RpcError, SolanaRpcClient
from integration.roundtrip_csv import RoundtripCsvWriter
from integration.roundtrip_probe import RoundtripProbe, build_pool_context
from strategy.roundtrip import parse_sizes

logger = logging.getLogger(__name__)


def finite_float(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {raw!r}")
    if not math.isfinite(value):
        raise argparse.ArgumentTypeError(f"must be finite: {raw!r}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Meteora DLMM round-trip cost probe")
    parser.add_argument("--rpc", default=None, help="RPC endpoint (default: $SOLANA_RPC_URL or config rpc_url)")
    parser.add_argument("--pool", required=True, help="DLMM pool address")
    parser.add_argument("--quoteMint", dest="quote_mint", required=True, help="Quote token mint (USDC or SOL)")
    parser.add_argument("--sizes", default=None, help='USD sizes: "10,25,50" or "a:b:s"')
    parser.add_argument("--range", dest="size_range", default=None, help='USD range "a:b:s" (overrides --sizes)')
    parser.add_argument("--coverage", type=int, default=None, help="Bin arrays to fetch per direction (default: 24)")
    parser.add_argument("--dynamicFeePct", dest="dynamic_fee_pct", type=finite_float, default=0.0,
                        help="Dynamic fee per leg, percent (default: 0)")
    parser.add_argument("--csv", default=None, help="Append results to this CSV file")
    parser.add_argument("--config", default=None, help="Path to YAML configuration file")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the meteora-probe CLI."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = load_probe_config(args.config)
    except ConfigError as e:
        print(f"[meteora_probe] Config error: {e}", file=sys.stderr)
        return 2

    try:
        sizes = parse_sizes(args.size_range or args.sizes or config.default_sizes)
    except ValueError as e:
        print(f"[meteora_probe] {e}", file=sys.stderr)
        return 2
    logger.debug(f"[meteora_probe] {len(sizes)} sizes: {sizes}")

    rpc = SolanaRpcClient(args.rpc or config.rpc_url)
    overrides = config.decimals_override()
    writer = RoundtripCsvWriter(args.csv) if args.csv else None

    try:
        pool = DlmmPool.create(rpc, args.pool, decimals_override=overrides)
        ctx = build_pool_context(
            pool,
            args.quote_mint,
            config,
            dynamic_fee_pct=args.dynamic_fee_pct,
            sol_usd_fn=lambda: fetch_sol_usd(
                rpc,
                pool_address=config.sol_usdc_pool,
                fallback=config.sol_usd_fallback,
                decimals_override=overrides,
                sol_mint=config.sol_mint,
            ),
        )
        probe = RoundtripProbe(pool, ctx, config, coverage=args.coverage, csv_writer=writer)
        probe.load_bin_arrays()
    except (RpcError, PoolDecodeError, ValueError) as e:
        print(f"[meteora_probe] Failed to load pool {args.pool}: {e}", file=sys.stderr)
        rpc.close()
        return 1

    try:
        if writer is not None:
            writer.open()
        probe.print_summary()
        probe.run(sizes)
    finally:
        if writer is not None:
            writer.close()
        rpc.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
