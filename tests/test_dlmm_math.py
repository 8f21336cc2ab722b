from decimal import Decimal

from ingestion.dex.meteora.layouts import BinState, StaticParameters, VariableParameters
from ingestion.dex.meteora.math import (
    MAX_FEE_RATE,
    SCALE,
    bin_id_to_bin_array_index,
    compute_fee,
    compute_fee_from_amount,
    compute_protocol_fee,
    find_next_bin_array_index_with_liquidity,
    get_base_fee,
    get_price_of_bin_by_bin_id,
    get_total_fee,
    get_variable_fee,
    mul_shr,
    price_per_token,
    shl_div,
    swap_exact_in_quote_at_bin,
    swap_exact_out_quote_at_bin,
    update_reference,
    update_volatility_accumulator,
)

from conftest import bitmap_words


def make_static(**overrides):
    params = dict(
        base_factor=10_000,
        filter_period=30,
        decay_period=600,
        reduction_factor=5_000,
        variable_fee_control=0,
        max_volatility_accumulator=350_000,
        min_bin_id=-443_636,
        max_bin_id=443_636,
        protocol_share=500,
    )
    params.update(overrides)
    return StaticParameters(**params)


def make_variable(**overrides):
    params = dict(volatility_accumulator=0, volatility_reference=0, index_reference=0, last_update_timestamp=0)
    params.update(overrides)
    return VariableParameters(**params)


def test_q64_rounding():
    assert mul_shr(3, SCALE // 2) == 1
    assert mul_shr(3, SCALE // 2, rounding="up") == 2
    assert shl_div(1, 3) == SCALE // 3
    assert shl_div(1, 3, rounding="up") == SCALE // 3 + 1


def test_bin_price():
    assert get_price_of_bin_by_bin_id(0, 10) == Decimal(1)
    assert get_price_of_bin_by_bin_id(2, 100) == Decimal("1.0201")
    assert price_per_token(Decimal(1), 9, 6) == Decimal(1000)


def test_base_fee():
    s = make_static()
    # 10_000 * 10 * 10 = 1_000_000 / 1e9 = 10 bps
    assert get_base_fee(10, s) == 1_000_000
    assert get_base_fee(10, make_static(base_fee_power_factor=1)) == 10_000_000


def test_variable_fee_rounds_up():
    s = make_static(variable_fee_control=40_000)
    v = make_variable(volatility_accumulator=10_000)
    # 40_000 * (10_000 * 10)^2 = 4e14 -> /1e11 = 4000
    assert get_variable_fee(10, s, v) == 4_000
    v.volatility_accumulator = 1
    assert get_variable_fee(10, s, v) == 1


def test_total_fee_is_capped():
    s = make_static(base_factor=65_535)
    assert get_total_fee(400, s, make_variable()) == MAX_FEE_RATE


def test_fee_on_net_and_gross_amounts():
    s = make_static()
    v = make_variable()
    assert compute_fee_from_amount(10, s, v, 1_000) == 1
    assert compute_fee(10, s, v, 1_000_000) == 1_002
    assert compute_protocol_fee(1_002, s) == 50


def test_update_reference_decays_by_elapsed_time():
    s = make_static()
    v = make_variable(volatility_accumulator=20_000, index_reference=5, last_update_timestamp=1_000)
    update_reference(7, v, s, 1_010)
    assert (v.index_reference, v.volatility_reference) == (5, 0)

    update_reference(7, v, s, 1_100)
    assert v.index_reference == 7
    assert v.volatility_reference == 10_000

    update_reference(8, v, s, 2_000)
    assert v.volatility_reference == 0


def test_volatility_accumulator_is_capped():
    s = make_static(max_volatility_accumulator=25_000)
    v = make_variable(volatility_reference=5_000, index_reference=0)
    update_volatility_accumulator(v, s, -1)
    assert v.volatility_accumulator == 15_000
    update_volatility_accumulator(v, s, 10)
    assert v.volatility_accumulator == 25_000


def test_bin_array_index_floors_negative_ids():
    assert bin_id_to_bin_array_index(0) == 0
    assert bin_id_to_bin_array_index(69) == 0
    assert bin_id_to_bin_array_index(70) == 1
    assert bin_id_to_bin_array_index(-1) == -1
    assert bin_id_to_bin_array_index(-70) == -1
    assert bin_id_to_bin_array_index(-71) == -2


def test_find_next_bin_array_index():
    bitmap = bitmap_words((-3, 0, 5))
    assert find_next_bin_array_index_with_liquidity(True, 10, bitmap) == 0
    assert find_next_bin_array_index_with_liquidity(True, -1, bitmap) == -3
    assert find_next_bin_array_index_with_liquidity(True, -300, bitmap) is None
    assert find_next_bin_array_index_with_liquidity(False, 70, bitmap) == 5
    assert find_next_bin_array_index_with_liquidity(False, -500, bitmap) == -3
    assert find_next_bin_array_index_with_liquidity(False, 6 * 70, bitmap) is None
    assert find_next_bin_array_index_with_liquidity(True, 0, [0] * 16) is None


def test_bin_exact_in_drains_bin_when_input_exceeds_reserve():
    bin_state = BinState(amount_x=0, amount_y=1_000, price=SCALE, liquidity_supply=1_000)
    amount_in, amount_out, fee, protocol_fee = swap_exact_in_quote_at_bin(
        bin_state, SCALE, 10, make_static(), make_variable(), 5_000, True
    )
    assert (amount_in, amount_out, fee) == (1_002, 1_000, 2)
    assert protocol_fee == 0


def test_bin_exact_in_empty_side_fills_nothing():
    bin_state = BinState(amount_x=1_000, amount_y=0, price=SCALE, liquidity_supply=1_000)
    assert swap_exact_in_quote_at_bin(bin_state, SCALE, 10, make_static(), make_variable(), 500, True) == (0, 0, 0, 0)


def test_bin_exact_out_adds_fee_to_input():
    bin_state = BinState(amount_x=1_000_000, amount_y=0, price=2 * SCALE, liquidity_supply=1)
    amount_in, amount_out, fee, _ = swap_exact_out_quote_at_bin(
        bin_state, 2 * SCALE, 10, make_static(), make_variable(), 1_000, False
    )
    # 1_000 X at 2 Y/X -> 2_000 Y plus ceil(2_000 * 1e6 / 999e6) = 3 fee
    assert amount_out == 1_000
    assert fee == 3
    assert amount_in == 2_003
