"""Pure decoding and humanization for Aave V3 periphery data (no I/O)."""
from __future__ import annotations

from decimal import Decimal, localcontext
from typing import Any, Sequence

from eth_abi import decode

from ...models import RawIncentive, RawReserve, RawReward
from .abi import (
    BASE_CURRENCY_FIELDS,
    INCENTIVES_DATA_OUTPUT,
    RESERVE_FIELDS,
    RESERVES_DATA_OUTPUT,
    REWARD_FIELDS,
)

RAY = 10**27
HALF_RAY = RAY // 2
SECONDS_PER_YEAR = 31_536_000
BPS = Decimal(10_000)
PRECISION = 60


# ---------------------------------------------------------------------------
# ABI decoding
# ---------------------------------------------------------------------------


def decode_address(data: bytes) -> str:
    (address,) = decode(["address"], data)
    return address


def decode_address_list(data: bytes) -> list[str]:
    (addresses,) = decode(["address[]"], data)
    return list(addresses)


def decode_reserves_data(data: bytes) -> tuple[list[dict[str, Any]], dict[str, Any]]:
    """Decode ``getReservesData`` into (reserve dicts, base currency dict)."""
    reserves_raw, base_raw = decode(RESERVES_DATA_OUTPUT, data)
    names = [n for n, _ in RESERVE_FIELDS]
    reserves = [dict(zip(names, values)) for values in reserves_raw]
    base = dict(zip((n for n, _ in BASE_CURRENCY_FIELDS), base_raw))
    return reserves, base


def _reward(values: Sequence[Any]) -> RawReward:
    fields = dict(zip((n for n, _ in REWARD_FIELDS), values))
    return RawReward(
        symbol=fields["rewardTokenSymbol"],
        token_address=fields["rewardTokenAddress"],
        emission_per_second=int(fields["emissionPerSecond"]),
        emission_end_timestamp=int(fields["emissionEndTimestamp"]),
        price_feed=int(fields["rewardPriceFeed"]),
        token_decimals=int(fields["rewardTokenDecimals"]),
        price_feed_decimals=int(fields["priceFeedDecimals"]),
    )


def _rewards(incentive_data: Sequence[Any]) -> tuple[RawReward, ...]:
    # (tokenAddress, incentiveControllerAddress, rewardsTokenInformation[])
    return tuple(_reward(r) for r in incentive_data[2])


def decode_incentives_data(data: bytes) -> list[RawIncentive]:
    """Decode ``getReservesIncentivesData`` into per-asset incentive records."""
    (entries,) = decode(INCENTIVES_DATA_OUTPUT, data)
    return [
        RawIncentive(
            underlying_asset=asset,
            supply_rewards=_rewards(a_data),
            variable_debt_rewards=_rewards(v_data),
            stable_debt_rewards=_rewards(s_data),
        )
        for asset, a_data, v_data, s_data in entries
    ]


# ---------------------------------------------------------------------------
# Ray math
# ---------------------------------------------------------------------------


def ray_mul(a: int, b: int) -> int:
    """Multiply two ray-scaled integers, rounding half up."""
    return (a * b + HALF_RAY) // RAY


def calculate_compounded_interest(
    rate: int, last_update_timestamp: int, current_timestamp: int
) -> int:
    """Ray-scaled compound factor using the protocol's 3-term binomial expansion."""
    exp = current_timestamp - last_update_timestamp
    if exp <= 0:
        return RAY

    exp_minus_one = exp - 1
    exp_minus_two = exp - 2 if exp > 2 else 0

    base_power_two = ray_mul(rate, rate) // (SECONDS_PER_YEAR * SECONDS_PER_YEAR)
    base_power_three = ray_mul(base_power_two, rate) // SECONDS_PER_YEAR

    second_term = exp * exp_minus_one * base_power_two // 2
    third_term = exp * exp_minus_one * exp_minus_two * base_power_three // 6

    return RAY + rate * exp // SECONDS_PER_YEAR + second_term + third_term


def rate_to_apy(rate: int) -> Decimal:
    """Convert a ray-scaled APR into a per-second compounded APY fraction."""
    with localcontext() as ctx:
        ctx.prec = PRECISION
        per_second = Decimal(rate) / Decimal(RAY) / SECONDS_PER_YEAR
        return (1 + per_second) ** SECONDS_PER_YEAR - 1


def to_units(raw: int, decimals: int) -> Decimal:
    """Scale a raw on-chain integer down by ``decimals``."""
    with localcontext() as ctx:
        ctx.prec = PRECISION
        return Decimal(raw).scaleb(-decimals)


# ---------------------------------------------------------------------------
# Humanization
# ---------------------------------------------------------------------------


def total_variable_debt(reserve: dict[str, Any], timestamp: int) -> int:
    index = ray_mul(
        int(reserve["variableBorrowIndex"]),
        calculate_compounded_interest(
            int(reserve["variableBorrowRate"]),
            int(reserve["lastUpdateTimestamp"]),
            timestamp,
        ),
    )
    return ray_mul(int(reserve["totalScaledVariableDebt"]), index)


def total_stable_debt(reserve: dict[str, Any], timestamp: int) -> int:
    factor = calculate_compounded_interest(
        int(reserve["averageStableRate"]),
        int(reserve["stableDebtLastUpdateTimestamp"]),
        timestamp,
    )
    return ray_mul(int(reserve["totalPrincipalStableDebt"]), factor)


def humanize_reserve(reserve: dict[str, Any], timestamp: int) -> RawReserve:
    """Turn one decoded ``AggregatedReserveData`` into token units and fractions.

    Debt is accrued to ``timestamp`` (the block's timestamp) so every figure
    describes the same instant:
        totalDebt      = variableDebt + stableDebt
        totalLiquidity = availableLiquidity + totalDebt + unbacked
    """
    decimals = int(reserve["decimals"])
    debt_raw = total_variable_debt(reserve, timestamp) + total_stable_debt(
        reserve, timestamp
    )
    liquidity_raw = int(reserve["availableLiquidity"]) + debt_raw + int(
        reserve["unbacked"]
    )
    treasury_raw = ray_mul(
        int(reserve["accruedToTreasury"]), int(reserve["liquidityIndex"])
    )

    return RawReserve(
        underlying_asset=reserve["underlyingAsset"],
        name=reserve["name"],
        symbol=reserve["symbol"],
        decimals=decimals,
        price_in_market_reference=int(reserve["priceInMarketReferenceCurrency"]),
        total_liquidity=to_units(liquidity_raw, decimals),
        total_debt=to_units(debt_raw, decimals),
        reserves=to_units(treasury_raw, decimals),
        reserve_factor=Decimal(int(reserve["reserveFactor"])) / BPS,
        liquidation_threshold=Decimal(int(reserve["reserveLiquidationThreshold"])) / BPS,
        borrowing_enabled=bool(reserve["borrowingEnabled"]),
        # Caps are whole tokens; 0 means "no cap"
        supply_cap=Decimal(int(reserve["supplyCap"])),
        borrow_cap=Decimal(int(reserve["borrowCap"])),
        supply_apy=rate_to_apy(int(reserve["liquidityRate"])),
        variable_borrow_apy=rate_to_apy(int(reserve["variableBorrowRate"])),
        stable_borrow_apy=rate_to_apy(int(reserve["stableBorrowRate"])),
    )


def order_by_reserves_list(
    reserves: list[RawReserve], reserves_list: list[str]
) -> list[RawReserve]:
    """Keep only reserves the pool lists, in the pool's order."""
    by_address = {r.underlying_asset.lower(): r for r in reserves}
    return [
        by_address[address.lower()]
        for address in reserves_list
        if address.lower() in by_address
    ]
