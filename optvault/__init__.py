"""
optvault - Deterministic Option Vault

Writes, prices and settles European call/put options with fixed-point
Black-Scholes pricing and strict collateral custody.

Usage:
    from datetime import datetime, timedelta
    from optvault import Vault, OptionKind, from_decimal

    vault = Vault("main", datetime(2025, 1, 1), verbose=False)
    cid = vault.write(
        "alice", "ETH",
        strike=from_decimal("2000"),
        expiry=datetime(2025, 1, 31),
        amount=from_decimal("1"),
        kind=OptionKind.CALL,
        deposited_value=from_decimal("1"),
    )

    premium, fee = vault.quote_premium(cid, from_decimal("2000"))
    vault.buy("bob", cid, from_decimal("2000"), premium + fee)

    vault.advance_time(datetime(2025, 1, 31))
    vault.settle_expired("anyone", cid, from_decimal("1900"))
"""

# Core types
from .core import (
    SCALE,
    OptionKind,
    ContractStatus,
    EventType,
    OptionContract,
    Transfer,
    VaultEvent,
    ProtocolParameters,
    VaultError,
    InvalidInput,
    InsufficientFunds,
    InvalidState,
    ArithmeticDegenerate,
    ProtocolInconsistency,
)

# Fixed-point kernel
from .fixed_point import (
    mul, div, tdiv, add, sub, absolute,
    exp, ln, sqrt, power,
    to_fixed, from_fixed, round_fixed,
    from_decimal, to_decimal,
)

# Black-Scholes pricing
from .black_scholes import (
    OptionParameters,
    calculate_d1_d2,
    cumulative_normal_distribution,
    normal_density,
    calculate_price,
    call_price, put_price,
    intrinsic_value,
    is_in_the_money,
    time_value,
    parameters_for,
)

# Greeks
from .greeks import (
    Greeks,
    delta, gamma, theta, vega, rho, leverage,
    compute_greeks,
)

# Vault
from .vault import (
    Vault,
    required_collateral,
    premium_for,
    settlement_split,
)

# Settlement automation
from .pricing_source import (
    PricingSource,
    StaticPricingSource,
    TimeSeriesPricingSource,
)
from .keeper import ExpiryKeeper

__all__ = [
    # Core
    'SCALE',
    'OptionKind',
    'ContractStatus',
    'EventType',
    'OptionContract',
    'Transfer',
    'VaultEvent',
    'ProtocolParameters',
    'VaultError',
    'InvalidInput',
    'InsufficientFunds',
    'InvalidState',
    'ArithmeticDegenerate',
    'ProtocolInconsistency',
    # Kernel
    'mul', 'div', 'tdiv', 'add', 'sub', 'absolute',
    'exp', 'ln', 'sqrt', 'power',
    'to_fixed', 'from_fixed', 'round_fixed',
    'from_decimal', 'to_decimal',
    # Pricing
    'OptionParameters',
    'calculate_d1_d2',
    'cumulative_normal_distribution',
    'normal_density',
    'calculate_price',
    'call_price', 'put_price',
    'intrinsic_value',
    'is_in_the_money',
    'time_value',
    'parameters_for',
    # Greeks
    'Greeks',
    'delta', 'gamma', 'theta', 'vega', 'rho', 'leverage',
    'compute_greeks',
    # Vault
    'Vault',
    'required_collateral',
    'premium_for',
    'settlement_split',
    # Automation
    'PricingSource',
    'StaticPricingSource',
    'TimeSeriesPricingSource',
    'ExpiryKeeper',
]
