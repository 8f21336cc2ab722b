"""
ingestion/dex/meteora/math.py

Meteora DLMM Math - Pure integer arithmetic of the lb_clmm program.

All functions are pure (no I/O). Amounts are atomic token units (int),
prices are Q64.64 fixed point (Y atoms per X atom), fee rates use a 1e9
denominator (FEE_PRECISION).
"""
from decimal import Decimal, getcontext
from typing import List, Optional, Tuple

from .layouts import (
    BIN_ARRAY_BITMAP_WORDS,
    MAX_BIN_PER_ARRAY,
    BinState,
    StaticParameters,
    VariableParameters,
)


# Set high precision for decimal operations
getcontext().prec = 80

# Q64.64 scaling
SCALE_OFFSET = 64
SCALE = 1 << SCALE_OFFSET

BASIS_POINT_MAX = 10_000
FEE_PRECISION = 1_000_000_000
MAX_FEE_RATE = 100_000_000

# Internal bitmap covers bin array indices [-BIN_ARRAY_BITMAP_SIZE, BIN_ARRAY_BITMAP_SIZE - 1]
BIN_ARRAY_BITMAP_SIZE = 512

ROUND_DOWN = "down"
ROUND_UP = "up"

# (amount_in, amount_out, fee, protocol_fee)
BinSwapResult = Tuple[int, int, int, int]


def mul_shr(x: int, y: int, offset: int = SCALE_OFFSET, rounding: str = ROUND_DOWN) -> int:
    """(x * y) >> offset with explicit rounding."""
    prod = x * y
    result = prod >> offset
    if rounding == ROUND_UP and prod & ((1 << offset) - 1):
        result += 1
    return result


def shl_div(x: int, y: int, offset: int = SCALE_OFFSET, rounding: str = ROUND_DOWN) -> int:
    """(x << offset) / y with explicit rounding."""
    if y == 0:
        raise ZeroDivisionError("shl_div by zero price")
    scaled = x << offset
    if rounding == ROUND_UP:
        return -(-scaled // y)
    return scaled // y


# -------------------------------------------------------------------------
# Prices
# -------------------------------------------------------------------------

def get_price_of_bin_by_bin_id(bin_id: int, bin_step: int) -> Decimal:
    """
    Price of a bin in atomic units (Y atoms per X atom).

    Formula:
        price = (1 + bin_step / 10000) ^ bin_id
    """
    if bin_step <= 0:
        raise ValueError("bin_step must be positive")
    base = Decimal(1) + Decimal(bin_step) / Decimal(BASIS_POINT_MAX)
    return base ** bin_id


def get_q64_price_from_id(bin_id: int, bin_step: int) -> int:
    """Bin price as Q64.64 integer."""
    return int(get_price_of_bin_by_bin_id(bin_id, bin_step) * Decimal(SCALE))


def q64_to_decimal(price: int) -> Decimal:
    return Decimal(price) / Decimal(SCALE)


def price_per_token(price_per_lamport: Decimal, decimals_x: int, decimals_y: int) -> Decimal:
    """Convert Y-atoms-per-X-atom price into whole Y per whole X."""
    return price_per_lamport * (Decimal(10) ** (decimals_x - decimals_y))


def bin_price(bin_state: BinState, bin_id: int, bin_step: int) -> int:
    """Stored Q64.64 price of a bin, computed from its id when never initialized."""
    if bin_state.price:
        return bin_state.price
    return get_q64_price_from_id(bin_id, bin_step)


# -------------------------------------------------------------------------
# Fees
# -------------------------------------------------------------------------

def get_base_fee(bin_step: int, s_parameters: StaticParameters) -> int:
    return (
        s_parameters.base_factor
        * bin_step
        * 10
        * (10 ** s_parameters.base_fee_power_factor)
    )


def get_variable_fee(
    bin_step: int,
    s_parameters: StaticParameters,
    v_parameters: VariableParameters,
) -> int:
    if s_parameters.variable_fee_control <= 0:
        return 0
    square_vfa_bin = (v_parameters.volatility_accumulator * bin_step) ** 2
    v_fee = s_parameters.variable_fee_control * square_vfa_bin
    return (v_fee + 99_999_999_999) // 100_000_000_000


def get_total_fee(
    bin_step: int,
    s_parameters: StaticParameters,
    v_parameters: VariableParameters,
) -> int:
    """Total fee rate (1e9 precision), capped at MAX_FEE_RATE."""
    total = get_base_fee(bin_step, s_parameters) + get_variable_fee(bin_step, s_parameters, v_parameters)
    return min(total, MAX_FEE_RATE)


def compute_fee(
    bin_step: int,
    s_parameters: StaticParameters,
    v_parameters: VariableParameters,
    amount: int,
) -> int:
    """Fee to add on top of a net input amount."""
    total_fee_rate = get_total_fee(bin_step, s_parameters, v_parameters)
    denominator = FEE_PRECISION - total_fee_rate
    return (amount * total_fee_rate + denominator - 1) // denominator


def compute_fee_from_amount(
    bin_step: int,
    s_parameters: StaticParameters,
    v_parameters: VariableParameters,
    amount_with_fees: int,
) -> int:
    """Fee contained in a gross input amount."""
    total_fee_rate = get_total_fee(bin_step, s_parameters, v_parameters)
    return (amount_with_fees * total_fee_rate + FEE_PRECISION - 1) // FEE_PRECISION


def compute_protocol_fee(fee_amount: int, s_parameters: StaticParameters) -> int:
    return fee_amount * s_parameters.protocol_share // BASIS_POINT_MAX


def update_reference(
    active_id: int,
    v_parameters: VariableParameters,
    s_parameters: StaticParameters,
    current_timestamp: int,
) -> None:
    """Decay the volatility reference according to time since the last swap (in place)."""
    elapsed = current_timestamp - v_parameters.last_update_timestamp
    if elapsed >= s_parameters.filter_period:
        v_parameters.index_reference = active_id
        if elapsed < s_parameters.decay_period:
            v_parameters.volatility_reference = (
                v_parameters.volatility_accumulator * s_parameters.reduction_factor // BASIS_POINT_MAX
            )
        else:
            v_parameters.volatility_reference = 0


def update_volatility_accumulator(
    v_parameters: VariableParameters,
    s_parameters: StaticParameters,
    active_id: int,
) -> None:
    """Volatility accumulator for the bin being crossed (in place)."""
    delta_id = abs(v_parameters.index_reference - active_id)
    accumulator = v_parameters.volatility_reference + delta_id * BASIS_POINT_MAX
    v_parameters.volatility_accumulator = min(accumulator, s_parameters.max_volatility_accumulator)


# -------------------------------------------------------------------------
# Bin arrays
# -------------------------------------------------------------------------

def bin_id_to_bin_array_index(bin_id: int) -> int:
    return bin_id // MAX_BIN_PER_ARRAY


def get_bin_array_lower_upper_bin_id(index: int) -> Tuple[int, int]:
    lower = index * MAX_BIN_PER_ARRAY
    return lower, lower + MAX_BIN_PER_ARRAY - 1


def bitmap_to_int(words: List[int]) -> int:
    value = 0
    for i, word in enumerate(words[:BIN_ARRAY_BITMAP_WORDS]):
        value |= (word & 0xFFFFFFFFFFFFFFFF) << (64 * i)
    return value


def find_next_bin_array_index_with_liquidity(
    swap_for_y: bool,
    active_id: int,
    bin_array_bitmap: List[int],
) -> Optional[int]:
    """
    Nearest bin array index (inclusive of the active one) flagged in the
    pair's internal bitmap, walking down for swap_for_y and up otherwise.

    Returns None when no flagged index exists in that direction.
    """
    bitmap = bitmap_to_int(bin_array_bitmap)
    if bitmap == 0:
        return None

    index = bin_id_to_bin_array_index(active_id)
    min_index, max_index = -BIN_ARRAY_BITMAP_SIZE, BIN_ARRAY_BITMAP_SIZE - 1

    if swap_for_y:
        if index < min_index:
            return None
        offset = min(index, max_index) + BIN_ARRAY_BITMAP_SIZE
        lower_bits = bitmap & ((1 << (offset + 1)) - 1)
        if lower_bits == 0:
            return None
        return lower_bits.bit_length() - 1 - BIN_ARRAY_BITMAP_SIZE

    if index > max_index:
        return None
    offset = max(index, min_index) + BIN_ARRAY_BITMAP_SIZE
    upper_bits = bitmap >> offset
    if upper_bits == 0:
        return None
    return (upper_bits & -upper_bits).bit_length() - 1 + offset - BIN_ARRAY_BITMAP_SIZE


# -------------------------------------------------------------------------
# Single-bin swaps
# -------------------------------------------------------------------------

def get_out_amount(amount_in: int, price: int, swap_for_y: bool) -> int:
    if swap_for_y:
        return mul_shr(amount_in, price, SCALE_OFFSET, ROUND_DOWN)
    return shl_div(amount_in, price, SCALE_OFFSET, ROUND_DOWN)


def get_amount_in(amount_out: int, price: int, swap_for_y: bool) -> int:
    if swap_for_y:
        return shl_div(amount_out, price, SCALE_OFFSET, ROUND_UP)
    return mul_shr(amount_out, price, SCALE_OFFSET, ROUND_UP)


def _max_amount_in(bin_state: BinState, price: int, swap_for_y: bool) -> Tuple[int, int]:
    """(input needed to drain the bin, output reserve of the bin), before fees."""
    if swap_for_y:
        return shl_div(bin_state.amount_y, price, SCALE_OFFSET, ROUND_UP), bin_state.amount_y
    return mul_shr(bin_state.amount_x, price, SCALE_OFFSET, ROUND_UP), bin_state.amount_x


def swap_exact_in_quote_at_bin(
    bin_state: BinState,
    price: int,
    bin_step: int,
    s_parameters: StaticParameters,
    v_parameters: VariableParameters,
    in_amount: int,
    swap_for_y: bool,
) -> BinSwapResult:
    """Fill as much of in_amount (fees included) as the bin allows."""
    if swap_for_y and bin_state.amount_y == 0:
        return 0, 0, 0, 0
    if not swap_for_y and bin_state.amount_x == 0:
        return 0, 0, 0, 0

    max_amount_in, max_amount_out = _max_amount_in(bin_state, price, swap_for_y)
    max_fee = compute_fee(bin_step, s_parameters, v_parameters, max_amount_in)
    max_amount_in += max_fee

    if in_amount > max_amount_in:
        return max_amount_in, max_amount_out, max_fee, compute_protocol_fee(max_fee, s_parameters)

    fee = compute_fee_from_amount(bin_step, s_parameters, v_parameters, in_amount)
    amount_out = min(get_out_amount(in_amount - fee, price, swap_for_y), max_amount_out)
    return in_amount, amount_out, fee, compute_protocol_fee(fee, s_parameters)


def swap_exact_out_quote_at_bin(
    bin_state: BinState,
    price: int,
    bin_step: int,
    s_parameters: StaticParameters,
    v_parameters: VariableParameters,
    out_amount: int,
    swap_for_y: bool,
) -> BinSwapResult:
    """Take up to out_amount from the bin; amount_in includes the fee."""
    reserve_out = bin_state.amount_y if swap_for_y else bin_state.amount_x
    if reserve_out == 0:
        return 0, 0, 0, 0

    if out_amount >= reserve_out:
        amount_in, amount_out = _max_amount_in(bin_state, price, swap_for_y)
    else:
        amount_in = get_amount_in(out_amount, price, swap_for_y)
        amount_out = out_amount

    fee = compute_fee(bin_step, s_parameters, v_parameters, amount_in)
    return amount_in + fee, amount_out, fee, compute_protocol_fee(fee, s_parameters)
