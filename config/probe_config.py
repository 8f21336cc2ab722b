"""config/probe_config.py

Configuration for the DLMM round-trip probe.

Static lookup tables (token symbols/decimals, pinned per-pool fees) and run
defaults live in YAML (config/meteora_probe.yaml). Validation is manual,
in __post_init__.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = Path(__file__).with_name("meteora_probe.yaml")


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    decimals: Optional[int] = None


@dataclass(frozen=True)
class ProbeConfig:
    """Run defaults and lookup tables."""
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    default_sizes: str = "10,25,50,100,250,500,1000,2500,5000,10000"
    coverage: int = 24
    request_delay_ms: int = 120
    slippage_bps: int = 50
    max_extra_bin_arrays: int = 3

    usdc_mint: str = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
    sol_mint: str = "So11111111111111111111111111111111111111112"
    sol_usdc_pool: str = "5rCf1DM8LjKTw4YqhnoLcngyZYeNnQqztScTogYHAS6"
    sol_usd_fallback: float = 195.0

    tokens: Dict[str, TokenInfo] = field(default_factory=dict)
    pinned_fee_bps: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self):
        if not self.rpc_url:
            raise ConfigError("rpc_url must be set")
        self._validate_range("coverage", self.coverage, 1, None)
        self._validate_range("request_delay_ms", self.request_delay_ms, 0, None)
        self._validate_range("slippage_bps", self.slippage_bps, 0, 10_000)
        self._validate_range("max_extra_bin_arrays", self.max_extra_bin_arrays, 0, None)
        self._validate_range("sol_usd_fallback", self.sol_usd_fallback, 0.0, None)
        for pool, bps in self.pinned_fee_bps.items():
            self._validate_range(f"pinned_fee_bps[{pool}]", bps, 0.0, 10_000)

    def _validate_range(self, name: str, value: Any, min_val: float, max_val: Optional[float] = None) -> None:
        try:
            val = float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{name} must be numeric, got {value}")

        if val < min_val:
            raise ConfigError(f"{name} {val} is below minimum {min_val}")
        if max_val is not None and val > max_val:
            raise ConfigError(f"{name} {val} is above maximum {max_val}")

    def symbol_for(self, mint: str) -> str:
        info = self.tokens.get(mint)
        return info.symbol if info else ""

    def decimals_override(self) -> Dict[str, int]:
        return {mint: info.decimals for mint, info in self.tokens.items() if info.decimals is not None}

    def pinned_fee_for(self, pool: str) -> float:
        return float(self.pinned_fee_bps.get(pool, 0.0))


def _parse_tokens(raw: Any) -> Dict[str, TokenInfo]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("tokens must be a mapping of mint -> {symbol, decimals}")
    tokens: Dict[str, TokenInfo] = {}
    for mint, entry in raw.items():
        if isinstance(entry, str):
            tokens[str(mint)] = TokenInfo(symbol=entry)
            continue
        if not isinstance(entry, dict):
            raise ConfigError(f"tokens[{mint}] must be a mapping")
        decimals = entry.get("decimals")
        tokens[str(mint)] = TokenInfo(
            symbol=str(entry.get("symbol", "")),
            decimals=int(decimals) if decimals is not None else None,
        )
    return tokens


def load_probe_config(path: Optional[str] = None, env: Optional[Dict[str, str]] = None) -> ProbeConfig:
    """
    Load the probe configuration.

    Args:
        path: YAML file (defaults to the bundled meteora_probe.yaml)
        env: Environment mapping (defaults to os.environ); SOLANA_RPC_URL overrides rpc_url

    Raises:
        ConfigError: File missing, not a mapping, or values out of range
    """
    p = Path(path) if path else DEFAULT_CONFIG_PATH
    if not p.exists():
        raise ConfigError(f"Config not found: {p}")

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{p.name} must be a YAML mapping (dict at top-level)")

    env = os.environ if env is None else env
    kwargs: Dict[str, Any] = {
        k: raw[k]
        for k in (
            "rpc_url", "default_sizes", "coverage", "request_delay_ms", "slippage_bps",
            "max_extra_bin_arrays", "usdc_mint", "sol_mint", "sol_usdc_pool", "sol_usd_fallback",
        )
        if k in raw
    }
    if env.get("SOLANA_RPC_URL"):
        kwargs["rpc_url"] = env["SOLANA_RPC_URL"]

    pinned = raw.get("pinned_fee_bps") or {}
    if not isinstance(pinned, dict):
        raise ConfigError("pinned_fee_bps must be a mapping of pool -> bps")

    return ProbeConfig(
        tokens=_parse_tokens(raw.get("tokens")),
        pinned_fee_bps={str(k): v for k, v in pinned.items()},
        **kwargs,
    )
