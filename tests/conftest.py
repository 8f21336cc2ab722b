import struct
from typing import Dict, Iterable, List, Optional, Tuple

import base58
import pytest

from ingestion.dex.meteora.layouts import (
    BIN_ARRAY_DISCRIMINATOR,
    BIN_ARRAY_HEADER_LAYOUT,
    BIN_LAYOUT,
    LB_PAIR_DISCRIMINATOR,
    LB_PAIR_LAYOUT,
    MAX_BIN_PER_ARRAY,
)
from ingestion.dex.meteora.pool import METEORA_DLMM_PROGRAM_ID, DlmmPool
from ingestion.rpc.client import AccountInfo, AccountNotFoundError


USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
SOL_MINT = "So11111111111111111111111111111111111111112"
POOL_ADDRESS = "5rCf1DM8LjKTw4YqhnoLcngyZYeNnQqztScTogYHAS6"

ZERO_KEY = bytes(32)


def key_bytes(pubkey: str) -> bytes:
    return base58.b58decode(pubkey)


def bitmap_words(indices: Iterable[int]) -> List[int]:
    value = 0
    for index in indices:
        value |= 1 << (index + 512)
    return [(value >> (64 * i)) & 0xFFFFFFFFFFFFFFFF for i in range(16)]


def pack_lb_pair(
    active_id: int = 0,
    bin_step: int = 10,
    token_x: str = SOL_MINT,
    token_y: str = USDC_MINT,
    base_factor: int = 10_000,
    variable_fee_control: int = 0,
    protocol_share: int = 500,
    bin_array_indices: Iterable[int] = (-1, 0),
    status: int = 0,
) -> bytes:
    values = [
        LB_PAIR_DISCRIMINATOR,
        # StaticParameters
        base_factor, 30, 600, 5_000, variable_fee_control, 350_000, -443_636, 443_636, protocol_share, 0,
        # VariableParameters
        0, 0, active_id, 0,
        255, b"\x00\x00", 0, active_id, bin_step, status, 0, b"\x00\x00", 0, 0,
        key_bytes(token_x), key_bytes(token_y), ZERO_KEY, ZERO_KEY,
        0, 0,
        ZERO_KEY,
        *bitmap_words(bin_array_indices),
        0,
        ZERO_KEY, ZERO_KEY,
        0, 0, 0,
        ZERO_KEY,
        0, 0,
    ]
    return LB_PAIR_LAYOUT.pack(*values)


def pack_bin_array(
    index: int,
    bins: Dict[int, Tuple[int, int]],
    lb_pair: str = POOL_ADDRESS,
    prices: Optional[Dict[int, int]] = None,
) -> bytes:
    """bins: bin_id -> (amount_x, amount_y); bins without a stored price read as uninitialized."""
    prices = prices or {}
    out = bytearray(BIN_ARRAY_HEADER_LAYOUT.pack(BIN_ARRAY_DISCRIMINATOR, index, 1, key_bytes(lb_pair)))
    lower = index * MAX_BIN_PER_ARRAY
    for bin_id in range(lower, lower + MAX_BIN_PER_ARRAY):
        amount_x, amount_y = bins.get(bin_id, (0, 0))
        price = prices.get(bin_id, 0)
        supply = amount_x + amount_y
        out += BIN_LAYOUT.pack(
            amount_x,
            amount_y,
            price.to_bytes(16, "little"),
            supply.to_bytes(16, "little"),
            bytes(32),
            bytes(16), bytes(16), bytes(16), bytes(16),
        )
    return bytes(out)


def pack_mint(decimals: int) -> bytes:
    return bytes(44) + bytes([decimals]) + bytes(37)


class FakeRpc:
    """In-memory account store with the SolanaRpcClient read API."""

    def __init__(self):
        self.accounts: Dict[str, AccountInfo] = {}
        self.calls: List[str] = []

    def add(self, pubkey: str, data: bytes, owner: str = METEORA_DLMM_PROGRAM_ID) -> None:
        self.accounts[pubkey] = AccountInfo(pubkey=pubkey, owner=owner, lamports=1, data=data)

    def get_account_info(self, pubkey: str) -> AccountInfo:
        self.calls.append(pubkey)
        if pubkey not in self.accounts:
            raise AccountNotFoundError(f"Account not found: {pubkey}")
        return self.accounts[pubkey]

    def get_multiple_accounts(self, pubkeys: List[str]) -> List[Optional[AccountInfo]]:
        self.calls.extend(pubkeys)
        return [self.accounts.get(pk) for pk in pubkeys]

    def close(self) -> None:
        pass


def build_pool(
    bin_arrays: Dict[int, Dict[int, Tuple[int, int]]],
    decimals_x: int = 9,
    decimals_y: int = 6,
    **lb_pair_kwargs,
) -> Tuple[DlmmPool, FakeRpc]:
    """Pool backed by FakeRpc, with the given bin arrays registered at their PDAs."""
    rpc = FakeRpc()
    lb_pair_kwargs.setdefault("bin_array_indices", tuple(bin_arrays))
    rpc.add(POOL_ADDRESS, pack_lb_pair(**lb_pair_kwargs))
    rpc.add(lb_pair_kwargs.get("token_x", SOL_MINT), pack_mint(decimals_x), owner="TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
    rpc.add(lb_pair_kwargs.get("token_y", USDC_MINT), pack_mint(decimals_y), owner="TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")

    pool = DlmmPool.create(rpc, POOL_ADDRESS, clock=lambda: 0)
    for index, bins in bin_arrays.items():
        rpc.add(pool.derive_bin_array(index), pack_bin_array(index, bins))
    return pool, rpc


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Optional[dict] = None):
        self.status_code = status_code
        self._body = body or {}

    def json(self) -> dict:
        return self._body


class FakeSession:
    """requests.Session stand-in replaying scripted responses."""

    def __init__(self, responses: List[object]):
        self._responses = list(responses)
        self.posts: List[dict] = []
        self.closed = False

    def post(self, url, json=None, timeout=None):
        self.posts.append(json)
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def two_array_pool():
    """
    SOL/USDC-like pool, bin_step 10, active bin 0 (price 1.0 atom/atom).

    Bin 0 holds both tokens; bins below hold Y, bins above hold X.
    """
    bins_low = {bin_id: (0, 1_000_000) for bin_id in range(-70, 0)}
    bins_high = {bin_id: (1_000_000, 0) for bin_id in range(1, 70)}
    bins_high[0] = (1_000_000, 1_000_000)
    return build_pool({-1: bins_low, 0: bins_high})
