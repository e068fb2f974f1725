"""Minimal ABI layouts for the Aave V3 periphery contracts that are read."""
from __future__ import annotations

from web3 import Web3

Field = tuple[str, str]

# UiPoolDataProviderV3.AggregatedReserveData
RESERVE_FIELDS: tuple[Field, ...] = (
    ("underlyingAsset", "address"),
    ("name", "string"),
    ("symbol", "string"),
    ("decimals", "uint256"),
    ("baseLTVasCollateral", "uint256"),
    ("reserveLiquidationThreshold", "uint256"),
    ("reserveLiquidationBonus", "uint256"),
    ("reserveFactor", "uint256"),
    ("usageAsCollateralEnabled", "bool"),
    ("borrowingEnabled", "bool"),
    ("stableBorrowRateEnabled", "bool"),
    ("isActive", "bool"),
    ("isFrozen", "bool"),
    ("liquidityIndex", "uint128"),
    ("variableBorrowIndex", "uint128"),
    ("liquidityRate", "uint128"),
    ("variableBorrowRate", "uint128"),
    ("stableBorrowRate", "uint128"),
    ("lastUpdateTimestamp", "uint40"),
    ("aTokenAddress", "address"),
    ("stableDebtTokenAddress", "address"),
    ("variableDebtTokenAddress", "address"),
    ("interestRateStrategyAddress", "address"),
    ("availableLiquidity", "uint256"),
    ("totalPrincipalStableDebt", "uint256"),
    ("averageStableRate", "uint256"),
    ("stableDebtLastUpdateTimestamp", "uint256"),
    ("totalScaledVariableDebt", "uint256"),
    ("priceInMarketReferenceCurrency", "uint256"),
    ("priceOracle", "address"),
    ("variableRateSlope1", "uint256"),
    ("variableRateSlope2", "uint256"),
    ("stableRateSlope1", "uint256"),
    ("stableRateSlope2", "uint256"),
    ("baseStableBorrowRate", "uint256"),
    ("baseVariableBorrowRate", "uint256"),
    ("optimalUsageRatio", "uint256"),
    ("isPaused", "bool"),
    ("isSiloedBorrowing", "bool"),
    ("accruedToTreasury", "uint128"),
    ("unbacked", "uint128"),
    ("isolationModeTotalDebt", "uint128"),
    ("flashLoanEnabled", "bool"),
    ("debtCeiling", "uint256"),
    ("debtCeilingDecimals", "uint256"),
    ("eModeCategoryId", "uint8"),
    ("borrowCap", "uint256"),
    ("supplyCap", "uint256"),
    ("eModeLtv", "uint16"),
    ("eModeLiquidationThreshold", "uint16"),
    ("eModeLiquidationBonus", "uint16"),
    ("eModePriceSource", "address"),
    ("eModeLabel", "string"),
    ("borrowableInIsolation", "bool"),
)

# UiPoolDataProviderV3.BaseCurrencyInfo
BASE_CURRENCY_FIELDS: tuple[Field, ...] = (
    ("marketReferenceCurrencyUnit", "uint256"),
    ("marketReferenceCurrencyPriceInUsd", "int256"),
    ("networkBaseTokenPriceInUsd", "int256"),
    ("networkBaseTokenPriceDecimals", "uint8"),
)

# UiIncentiveDataProviderV3.RewardInfo
REWARD_FIELDS: tuple[Field, ...] = (
    ("rewardTokenSymbol", "string"),
    ("rewardTokenAddress", "address"),
    ("rewardOracleAddress", "address"),
    ("emissionPerSecond", "uint256"),
    ("incentivesLastUpdateTimestamp", "uint256"),
    ("tokenIncentivesIndex", "uint256"),
    ("emissionEndTimestamp", "uint256"),
    ("rewardPriceFeed", "int256"),
    ("rewardTokenDecimals", "uint8"),
    ("precision", "uint8"),
    ("priceFeedDecimals", "uint8"),
)


def tuple_type(fields: tuple[Field, ...]) -> str:
    """ABI tuple type string for an ordered field list."""
    return "(" + ",".join(t for _, t in fields) + ")"


# UiIncentiveDataProviderV3.IncentiveData
INCENTIVE_DATA_TYPE = f"(address,address,{tuple_type(REWARD_FIELDS)}[])"

# UiIncentiveDataProviderV3.AggregatedReserveIncentiveData
RESERVE_INCENTIVE_TYPE = (
    f"(address,{INCENTIVE_DATA_TYPE},{INCENTIVE_DATA_TYPE},{INCENTIVE_DATA_TYPE})"
)

RESERVES_DATA_OUTPUT = [
    f"{tuple_type(RESERVE_FIELDS)}[]",
    tuple_type(BASE_CURRENCY_FIELDS),
]
INCENTIVES_DATA_OUTPUT = [f"{RESERVE_INCENTIVE_TYPE}[]"]

GET_POOL = "getPool()"
GET_RESERVES_LIST = "getReservesList()"
GET_RESERVES_DATA = "getReservesData(address)"
GET_RESERVES_INCENTIVES_DATA = "getReservesIncentivesData(address)"


def selector(signature: str) -> bytes:
    """4-byte function selector for a canonical signature."""
    return bytes(Web3.keccak(text=signature)[:4])
