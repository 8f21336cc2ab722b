"""
ingestion/dex/meteora/pool.py

DlmmPool - typed DLMM pool binding: loads LbPair/BinArray accounts over RPC
and produces exact-in / exact-out swap quotes by walking bins the way the
lb_clmm program executes a swap.

Usage:
    pool = DlmmPool.create(rpc, "5rCf1DM8LjKTw4YqhnoLcngyZYeNnQqztScTogYHAS6")
    bin_arrays = pool.get_bin_array_for_swap(swap_for_y=True, count=24)
    quote = pool.swap_quote(1_000_000_000, True, 50, bin_arrays)
"""
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from solders.pubkey import Pubkey

from ingestion.rpc.client import AccountNotFoundError

from ..models import ActiveBin, SwapQuote, SwapQuoteExactOut
from .layouts import (
    BinArrayState,
    LbPairState,
    decode_bin_array,
    decode_lb_pair,
    decode_mint_decimals,
    encode_bin_array_seed,
    pubkey_to_bytes,
)
from .math import (
    BASIS_POINT_MAX,
    bin_id_to_bin_array_index,
    bin_price,
    compute_fee_from_amount,
    find_next_bin_array_index_with_liquidity,
    get_bin_array_lower_upper_bin_id,
    get_out_amount,
    get_price_of_bin_by_bin_id,
    price_per_token,
    q64_to_decimal,
    swap_exact_in_quote_at_bin,
    swap_exact_out_quote_at_bin,
    update_reference,
    update_volatility_accumulator,
)

logger = logging.getLogger(__name__)


# Meteora DLMM program ID
METEORA_DLMM_PROGRAM_ID = "LBUZKhRxPF3XUpBCjp4YzTKgLccj5HBQVXMCmTrxASL"

BIN_ARRAY_SEED = b"bin_array"


class InsufficientLiquidityError(RuntimeError):
    """Fetched bin arrays cannot fill the requested amount."""


@dataclass
class BinArrayAccount:
    """BinArray account with its address."""
    pubkey: str
    account: BinArrayState


class DlmmPool:
    """
    Meteora DLMM pool.

    Holds the decoded LbPair and token decimals; quotes are computed locally
    from bin arrays fetched with get_bin_array_for_swap().
    """

    def __init__(
        self,
        rpc,
        pubkey: str,
        lb_pair: LbPairState,
        decimals_x: int,
        decimals_y: int,
        program_id: str = METEORA_DLMM_PROGRAM_ID,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            rpc: SolanaRpcClient (or anything with get_account_info/get_multiple_accounts)
            pubkey: Pool (LbPair) address
            lb_pair: Decoded LbPair state
            decimals_x: Token X decimals
            decimals_y: Token Y decimals
            program_id: Owning program of the pool account
            clock: Unix-time source used for volatility decay
        """
        self.rpc = rpc
        self.pubkey = pubkey
        self.lb_pair = lb_pair
        self.decimals_x = decimals_x
        self.decimals_y = decimals_y
        self.program_id = program_id
        self._clock = clock

    @classmethod
    def create(
        cls,
        rpc,
        pool_address: str,
        decimals_override: Optional[Dict[str, int]] = None,
        clock: Callable[[], float] = time.time,
    ) -> "DlmmPool":
        """
        Load a pool and its token decimals.

        Decimals from decimals_override take precedence over the on-chain
        mint accounts.

        Raises:
            AccountNotFoundError: Pool or mint account missing
            PoolDecodeError: Pool account is not an LbPair
        """
        account = rpc.get_account_info(pool_address)
        lb_pair = decode_lb_pair(account.data)
        overrides = decimals_override or {}

        mints = [lb_pair.token_x_mint, lb_pair.token_y_mint]
        decimals: List[int] = []
        missing = [m for m in mints if m not in overrides]
        fetched = dict(zip(missing, rpc.get_multiple_accounts(missing))) if missing else {}
        for mint in mints:
            if mint in overrides:
                decimals.append(int(overrides[mint]))
                continue
            mint_account = fetched.get(mint)
            if mint_account is None:
                raise AccountNotFoundError(f"Mint account not found: {mint}")
            decimals.append(decode_mint_decimals(mint_account.data))

        pool = cls(
            rpc=rpc,
            pubkey=pool_address,
            lb_pair=lb_pair,
            decimals_x=decimals[0],
            decimals_y=decimals[1],
            program_id=account.owner or METEORA_DLMM_PROGRAM_ID,
            clock=clock,
        )
        logger.debug(
            f"[meteora] Loaded pool {pool_address[:8]}...: {lb_pair.token_x_mint[:8]}.../{lb_pair.token_y_mint[:8]}... "
            f"bin_step={lb_pair.bin_step} active_id={lb_pair.active_id} dec=({decimals[0]},{decimals[1]})"
        )
        return pool

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    def derive_bin_array(self, index: int) -> str:
        """PDA of the bin array with the given index."""
        address, _bump = Pubkey.find_program_address(
            [BIN_ARRAY_SEED, pubkey_to_bytes(self.pubkey), encode_bin_array_seed(index)],
            Pubkey.from_string(self.program_id),
        )
        return str(address)

    def get_active_bin(self) -> ActiveBin:
        """Active bin amounts and price; an unallocated bin array reads as empty."""
        active_id = self.lb_pair.active_id
        index = bin_id_to_bin_array_index(active_id)

        x_amount = y_amount = supply = 0
        raw_price = 0
        try:
            account = self.rpc.get_account_info(self.derive_bin_array(index))
            bin_state = decode_bin_array(account.data).get_bin(active_id)
            x_amount, y_amount = bin_state.amount_x, bin_state.amount_y
            supply, raw_price = bin_state.liquidity_supply, bin_state.price
        except AccountNotFoundError:
            logger.debug(f"[meteora] Bin array {index} not allocated, active bin treated as empty")

        price = q64_to_decimal(raw_price) if raw_price else get_price_of_bin_by_bin_id(active_id, self.lb_pair.bin_step)
        return ActiveBin(
            bin_id=active_id,
            x_amount=x_amount,
            y_amount=y_amount,
            supply=supply,
            price=price,
            price_per_token=price_per_token(price, self.decimals_x, self.decimals_y),
        )

    def get_bin_array_for_swap(self, swap_for_y: bool, count: int = 4) -> List[BinArrayAccount]:
        """
        Fetch up to `count` bin arrays holding liquidity, starting at the
        active bin and moving in the swap direction.
        """
        indices: List[int] = []
        cursor = self.lb_pair.active_id
        while len(indices) < count:
            index = find_next_bin_array_index_with_liquidity(swap_for_y, cursor, self.lb_pair.bin_array_bitmap)
            if index is None:
                break
            indices.append(index)
            lower, upper = get_bin_array_lower_upper_bin_id(index)
            cursor = lower - 1 if swap_for_y else upper + 1

        if not indices:
            logger.warning(f"[meteora] No bin arrays with liquidity for swap_for_y={swap_for_y}")
            return []

        pubkeys = [self.derive_bin_array(i) for i in indices]
        accounts = self.rpc.get_multiple_accounts(pubkeys)
        bin_arrays = [
            BinArrayAccount(pubkey=pk, account=decode_bin_array(acc.data))
            for pk, acc in zip(pubkeys, accounts)
            if acc is not None
        ]
        logger.debug(f"[meteora] Fetched {len(bin_arrays)}/{len(indices)} bin arrays (swap_for_y={swap_for_y})")
        return bin_arrays

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------
    def _find_next_bin_array(
        self,
        swap_for_y: bool,
        active_id: int,
        bin_arrays: List[BinArrayAccount],
    ) -> Optional[BinArrayAccount]:
        index = find_next_bin_array_index_with_liquidity(swap_for_y, active_id, self.lb_pair.bin_array_bitmap)
        if index is None:
            return None
        for bin_array in bin_arrays:
            if bin_array.account.index == index:
                return bin_array
        return None

    def _extra_bin_arrays(
        self,
        swap_for_y: bool,
        last_id: int,
        bin_arrays: List[BinArrayAccount],
        used: List[str],
        max_extra_bin_arrays: int,
    ) -> List[str]:
        """Addresses of up to max_extra_bin_arrays fetched arrays beyond the last one used."""
        last_index = bin_id_to_bin_array_index(last_id)
        if swap_for_y:
            beyond = sorted((b for b in bin_arrays if b.account.index < last_index), key=lambda b: -b.account.index)
        else:
            beyond = sorted((b for b in bin_arrays if b.account.index > last_index), key=lambda b: b.account.index)
        return [b.pubkey for b in beyond if b.pubkey not in used][:max_extra_bin_arrays]

    def swap_quote(
        self,
        in_amount: int,
        swap_for_y: bool,
        allowed_slippage_bps: int,
        bin_arrays: List[BinArrayAccount],
        is_partial_fill: bool = False,
        max_extra_bin_arrays: int = 0,
    ) -> SwapQuote:
        """
        Exact-input quote.

        Args:
            in_amount: Input amount (atomic units, fees included)
            swap_for_y: True for X -> Y, False for Y -> X
            allowed_slippage_bps: Slippage tolerance used for min_out_amount
            bin_arrays: Bin arrays from get_bin_array_for_swap(swap_for_y, ...)
            is_partial_fill: Return what can be filled instead of raising
            max_extra_bin_arrays: Extra bin array addresses to attach to the quote

        Raises:
            InsufficientLiquidityError: bin_arrays cannot fill in_amount
        """
        if in_amount <= 0:
            raise ValueError("in_amount must be positive")

        bin_step = self.lb_pair.bin_step
        s_parameters = self.lb_pair.parameters
        v_parameters = self.lb_pair.v_parameters.copy()
        active_id = self.lb_pair.active_id
        update_reference(active_id, v_parameters, s_parameters, int(self._clock()))

        in_amount_left = in_amount
        total_out = 0
        total_fee = 0
        total_protocol_fee = 0
        start_bin = None
        last_filled_id = active_id
        used: List[str] = []

        while in_amount_left > 0:
            bin_array = self._find_next_bin_array(swap_for_y, active_id, bin_arrays)
            if bin_array is None:
                if is_partial_fill:
                    break
                raise InsufficientLiquidityError("Insufficient liquidity in bin arrays for swap quote")

            if bin_array.pubkey not in used:
                used.append(bin_array.pubkey)

            if not bin_array.account.contains(active_id):
                active_id = bin_array.account.upper_bin_id if swap_for_y else bin_array.account.lower_bin_id

            update_volatility_accumulator(v_parameters, s_parameters, active_id)
            bin_state = bin_array.account.get_bin(active_id)
            price = bin_price(bin_state, active_id, bin_step)
            amount_in, amount_out, fee, protocol_fee = swap_exact_in_quote_at_bin(
                bin_state, price, bin_step, s_parameters, v_parameters, in_amount_left, swap_for_y
            )
            if amount_in > 0:
                in_amount_left -= amount_in
                total_out += amount_out
                total_fee += fee
                total_protocol_fee += protocol_fee
                if start_bin is None:
                    start_bin = (bin_state, price)
                last_filled_id = active_id

            if in_amount_left > 0:
                active_id = active_id - 1 if swap_for_y else active_id + 1

        if start_bin is None:
            raise InsufficientLiquidityError("Insufficient liquidity in bin arrays for swap quote")

        consumed = in_amount - in_amount_left
        _, start_price = start_bin
        fee_on_consumed = compute_fee_from_amount(bin_step, s_parameters, v_parameters, consumed)
        out_without_slippage = get_out_amount(consumed - fee_on_consumed, start_price, swap_for_y)
        if out_without_slippage > 0:
            price_impact = (Decimal(total_out) - Decimal(out_without_slippage)) / Decimal(out_without_slippage) * 100
        else:
            price_impact = Decimal(0)

        min_out = total_out * (BASIS_POINT_MAX - allowed_slippage_bps) // BASIS_POINT_MAX
        extra = self._extra_bin_arrays(swap_for_y, last_filled_id, bin_arrays, used, max_extra_bin_arrays)

        return SwapQuote(
            consumed_in_amount=consumed,
            out_amount=total_out,
            fee=total_fee,
            protocol_fee=total_protocol_fee,
            min_out_amount=min_out,
            price_impact_pct=price_impact,
            end_price=get_price_of_bin_by_bin_id(last_filled_id, bin_step),
            bin_arrays_pubkey=used + extra,
        )

    def swap_quote_exact_out(
        self,
        out_amount: int,
        swap_for_y: bool,
        allowed_slippage_bps: int,
        bin_arrays: List[BinArrayAccount],
        max_extra_bin_arrays: int = 0,
    ) -> SwapQuoteExactOut:
        """
        Exact-output quote: input (fees included) needed to receive out_amount.

        Raises:
            InsufficientLiquidityError: bin_arrays cannot supply out_amount
        """
        if out_amount <= 0:
            raise ValueError("out_amount must be positive")

        bin_step = self.lb_pair.bin_step
        s_parameters = self.lb_pair.parameters
        v_parameters = self.lb_pair.v_parameters.copy()
        active_id = self.lb_pair.active_id
        update_reference(active_id, v_parameters, s_parameters, int(self._clock()))

        out_amount_left = out_amount
        total_in = 0
        total_fee = 0
        total_protocol_fee = 0
        last_filled_id = active_id
        used: List[str] = []

        while out_amount_left > 0:
            bin_array = self._find_next_bin_array(swap_for_y, active_id, bin_arrays)
            if bin_array is None:
                raise InsufficientLiquidityError("Insufficient liquidity in bin arrays for exact-out swap quote")

            if bin_array.pubkey not in used:
                used.append(bin_array.pubkey)

            if not bin_array.account.contains(active_id):
                active_id = bin_array.account.upper_bin_id if swap_for_y else bin_array.account.lower_bin_id

            update_volatility_accumulator(v_parameters, s_parameters, active_id)
            bin_state = bin_array.account.get_bin(active_id)
            price = bin_price(bin_state, active_id, bin_step)
            amount_in, amount_out, fee, protocol_fee = swap_exact_out_quote_at_bin(
                bin_state, price, bin_step, s_parameters, v_parameters, out_amount_left, swap_for_y
            )
            if amount_out > 0:
                out_amount_left -= amount_out
                total_in += amount_in
                total_fee += fee
                total_protocol_fee += protocol_fee
                last_filled_id = active_id

            if out_amount_left > 0:
                active_id = active_id - 1 if swap_for_y else active_id + 1

        start_price = get_price_of_bin_by_bin_id(self.lb_pair.active_id, bin_step)
        end_price = get_price_of_bin_by_bin_id(last_filled_id, bin_step)
        price_impact = abs(start_price - end_price) / start_price * 100
        max_in = total_in * (BASIS_POINT_MAX + allowed_slippage_bps) // BASIS_POINT_MAX
        extra = self._extra_bin_arrays(swap_for_y, last_filled_id, bin_arrays, used, max_extra_bin_arrays)

        return SwapQuoteExactOut(
            in_amount=total_in,
            out_amount=out_amount,
            fee=total_fee,
            protocol_fee=total_protocol_fee,
            max_in_amount=max_in,
            price_impact_pct=price_impact,
            bin_arrays_pubkey=used + extra,
        )
