"""
ingestion/dex/meteora/layouts.py

Meteora DLMM account layout definitions: LbPair, BinArray/Bin, and the
decimals field of an SPL mint.

Layouts follow the lb_clmm program IDL (Anchor, little-endian, packed).
"""
import hashlib
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, List

import base58


# Solana pubkey (32 bytes, base58 encoded)
PUBKEY_LENGTH = 32

# Bins per BinArray account
MAX_BIN_PER_ARRAY = 70

# Number of u64 words in LbPair.bin_array_bitmap (covers indices -512..511)
BIN_ARRAY_BITMAP_WORDS = 16

# SPL Token / Token-2022 mint: COption<Pubkey>(36) + supply u64(8) -> decimals u8
MINT_DECIMALS_OFFSET = 44


class PoolDecodeError(ValueError):
    """Raw account bytes do not match the expected layout."""


def anchor_discriminator(account_name: str) -> bytes:
    """First 8 bytes of sha256("account:<Name>")."""
    return hashlib.sha256(f"account:{account_name}".encode("utf-8")).digest()[:8]


LB_PAIR_DISCRIMINATOR = anchor_discriminator("LbPair")
BIN_ARRAY_DISCRIMINATOR = anchor_discriminator("BinArray")


def pubkey_to_string(data: bytes) -> str:
    """Convert 32-byte pubkey to base58 string."""
    return base58.b58encode(data).decode('utf-8')


def pubkey_to_bytes(pubkey: str) -> bytes:
    """Convert base58 pubkey string to its 32 raw bytes."""
    raw = base58.b58decode(pubkey)
    if len(raw) != PUBKEY_LENGTH:
        raise PoolDecodeError(f"Invalid pubkey length {len(raw)} for {pubkey}")
    return raw


@dataclass
class StaticParameters:
    """Pool fee configuration set at creation."""
    base_factor: int
    filter_period: int
    decay_period: int
    reduction_factor: int
    variable_fee_control: int
    max_volatility_accumulator: int
    min_bin_id: int
    max_bin_id: int
    protocol_share: int            # bps of the swap fee
    base_fee_power_factor: int = 0


@dataclass
class VariableParameters:
    """Volatility state, updated on every swap."""
    volatility_accumulator: int
    volatility_reference: int
    index_reference: int
    last_update_timestamp: int

    def copy(self) -> "VariableParameters":
        return VariableParameters(
            volatility_accumulator=self.volatility_accumulator,
            volatility_reference=self.volatility_reference,
            index_reference=self.index_reference,
            last_update_timestamp=self.last_update_timestamp,
        )


@dataclass
class LbPairState:
    """Decoded Meteora DLMM LbPair account."""
    parameters: StaticParameters
    v_parameters: VariableParameters
    pair_type: int
    active_id: int                 # i32: current active bin id
    bin_step: int                  # u16: bin step in bps
    status: int
    activation_type: int
    token_x_mint: str
    token_y_mint: str
    reserve_x: str
    reserve_y: str
    protocol_fee_x: int
    protocol_fee_y: int
    oracle: str
    bin_array_bitmap: List[int] = field(default_factory=list)
    last_updated_at: int = 0
    activation_point: int = 0
    creator: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_id": self.active_id,
            "bin_step": self.bin_step,
            "base_factor": self.parameters.base_factor,
            "protocol_share": self.parameters.protocol_share,
            "token_x_mint": self.token_x_mint,
            "token_y_mint": self.token_y_mint,
            "reserve_x": self.reserve_x,
            "reserve_y": self.reserve_y,
            "oracle": self.oracle,
            "status": self.status,
        }

    @property
    def is_enabled(self) -> bool:
        """Status 0 means the pair is open for swaps."""
        return self.status == 0


@dataclass
class BinState:
    """Single liquidity bin."""
    amount_x: int
    amount_y: int
    price: int                     # Q64.64, Y atoms per X atom
    liquidity_supply: int


@dataclass
class BinArrayState:
    """Decoded BinArray account (70 consecutive bins)."""
    index: int
    version: int
    lb_pair: str
    bins: List[BinState]

    @property
    def lower_bin_id(self) -> int:
        return self.index * MAX_BIN_PER_ARRAY

    @property
    def upper_bin_id(self) -> int:
        return self.lower_bin_id + MAX_BIN_PER_ARRAY - 1

    def contains(self, bin_id: int) -> bool:
        return self.lower_bin_id <= bin_id <= self.upper_bin_id

    def get_bin(self, bin_id: int) -> BinState:
        if not self.contains(bin_id):
            raise KeyError(f"Bin {bin_id} outside bin array {self.index}")
        return self.bins[bin_id - self.lower_bin_id]


# LbPair layout, discriminator included
LB_PAIR_LAYOUT = struct.Struct(
    '<'
    '8s'          # discriminator
    # StaticParameters (32)
    'H'           # base_factor
    'H'           # filter_period
    'H'           # decay_period
    'H'           # reduction_factor
    'I'           # variable_fee_control
    'I'           # max_volatility_accumulator
    'i'           # min_bin_id
    'i'           # max_bin_id
    'H'           # protocol_share
    'B'           # base_fee_power_factor
    '5x'
    # VariableParameters (32)
    'I'           # volatility_accumulator
    'I'           # volatility_reference
    'i'           # index_reference
    '4x'
    'q'           # last_update_timestamp
    '8x'
    'B'           # bump_seed
    '2s'          # bin_step_seed
    'B'           # pair_type
    'i'           # active_id
    'H'           # bin_step
    'B'           # status
    'B'           # require_base_factor_seed
    '2s'          # base_factor_seed
    'B'           # activation_type
    'B'           # creator_pool_on_off_control
    '32s'         # token_x_mint
    '32s'         # token_y_mint
    '32s'         # reserve_x
    '32s'         # reserve_y
    'Q'           # protocol_fee.amount_x
    'Q'           # protocol_fee.amount_y
    '32x'         # padding1
    '288x'        # reward_infos[2]
    '32s'         # oracle
    '16Q'         # bin_array_bitmap
    'q'           # last_updated_at
    '32x'         # padding2
    '32s'         # pre_activation_swap_address
    '32s'         # base_key
    'Q'           # activation_point
    'Q'           # pre_activation_duration
    '8x'          # padding3
    'Q'           # padding4
    '32s'         # creator
    'B'           # token_mint_x_program_flag
    'B'           # token_mint_y_program_flag
    '22x'         # reserved
)

LB_PAIR_SIZE = LB_PAIR_LAYOUT.size  # 904

# BinArray header: discriminator, index i64, version u8, padding, lb_pair
BIN_ARRAY_HEADER_LAYOUT = struct.Struct('<8sqB7x32s')

# Bin: amount_x, amount_y, price, liquidity_supply, rewards[2], fee_x, fee_y, amount_x_in, amount_y_in
BIN_LAYOUT = struct.Struct('<QQ16s16s32s16s16s16s16s')

BIN_ARRAY_SIZE = BIN_ARRAY_HEADER_LAYOUT.size + MAX_BIN_PER_ARRAY * BIN_LAYOUT.size  # 10136


def _u128(raw: bytes) -> int:
    return int.from_bytes(raw, "little")


def decode_lb_pair(data: bytes) -> LbPairState:
    """
    Decode Meteora LbPair state from raw bytes.

    Args:
        data: Raw account data (bytes) - includes 8-byte discriminator

    Returns:
        LbPairState object

    Raises:
        PoolDecodeError: If data is too short or the discriminator does not match
    """
    if len(data) < LB_PAIR_SIZE:
        raise PoolDecodeError(
            f"LbPair data too short: got {len(data)} bytes, need {LB_PAIR_SIZE}"
        )

    u = LB_PAIR_LAYOUT.unpack_from(data)
    if u[0] != LB_PAIR_DISCRIMINATOR:
        raise PoolDecodeError("Account is not a DLMM LbPair (discriminator mismatch)")

    parameters = StaticParameters(*u[1:11])
    v_parameters = VariableParameters(*u[11:15])

    return LbPairState(
        parameters=parameters,
        v_parameters=v_parameters,
        pair_type=u[17],
        active_id=u[18],
        bin_step=u[19],
        status=u[20],
        activation_type=u[23],
        token_x_mint=pubkey_to_string(u[25]),
        token_y_mint=pubkey_to_string(u[26]),
        reserve_x=pubkey_to_string(u[27]),
        reserve_y=pubkey_to_string(u[28]),
        protocol_fee_x=u[29],
        protocol_fee_y=u[30],
        oracle=pubkey_to_string(u[31]),
        bin_array_bitmap=list(u[32:32 + BIN_ARRAY_BITMAP_WORDS]),
        last_updated_at=u[48],
        activation_point=u[51],
        creator=pubkey_to_string(u[54]),
    )


def decode_bin_array(data: bytes) -> BinArrayState:
    """Decode a BinArray account (header + 70 bins)."""
    if len(data) < BIN_ARRAY_SIZE:
        raise PoolDecodeError(
            f"BinArray data too short: got {len(data)} bytes, need {BIN_ARRAY_SIZE}"
        )

    discriminator, index, version, lb_pair = BIN_ARRAY_HEADER_LAYOUT.unpack_from(data)
    if discriminator != BIN_ARRAY_DISCRIMINATOR:
        raise PoolDecodeError("Account is not a DLMM BinArray (discriminator mismatch)")

    bins: List[BinState] = []
    offset = BIN_ARRAY_HEADER_LAYOUT.size
    for _ in range(MAX_BIN_PER_ARRAY):
        fields = BIN_LAYOUT.unpack_from(data, offset)
        bins.append(BinState(
            amount_x=fields[0],
            amount_y=fields[1],
            price=_u128(fields[2]),
            liquidity_supply=_u128(fields[3]),
        ))
        offset += BIN_LAYOUT.size

    return BinArrayState(
        index=index,
        version=version,
        lb_pair=pubkey_to_string(lb_pair),
        bins=bins,
    )


def decode_mint_decimals(data: bytes) -> int:
    """Read the decimals byte of an SPL Token / Token-2022 mint."""
    if len(data) <= MINT_DECIMALS_OFFSET:
        raise PoolDecodeError(f"Mint data too short: {len(data)} bytes")
    return data[MINT_DECIMALS_OFFSET]


def encode_bin_array_seed(index: int) -> bytes:
    """i64 little-endian seed used by the bin_array PDA."""
    return struct.pack('<q', index)

