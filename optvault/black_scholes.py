"""
black_scholes.py - Fixed-Point Black-Scholes Option Pricing

European call/put pricing evaluated entirely on the fixed-point kernel.
Time to expiry is given in seconds and converted to a 365-day year-fraction.

Provides:
- OptionParameters: immutable pricing inputs
- d1/d2 intermediates
- Normal density and cumulative distribution (Abramowitz-Stegun 26.2.17)
- Option prices (call, put) with a mandatory max(0, .) clamp
- Intrinsic value, moneyness, time value

All functions are pure: same parameters in, same integers out.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Tuple

from .core import (
    SCALE, SQRT_2PI, SECONDS_PER_YEAR,
    OptionKind, OptionContract,
    InvalidInput, ArithmeticDegenerate,
)
from .fixed_point import mul, div, exp, ln, sqrt


# Abramowitz & Stegun 26.2.17 coefficients, scaled.
# Absolute error of the approximation is below 7.5e-8.
AS_P = 231641900000000000
AS_B1 = 319381530000000000
AS_B2 = -356563782000000000
AS_B3 = 1781477937000000000
AS_B4 = -1821255978000000000
AS_B5 = 1330274429000000000

# Beyond +/- this bound N(x) is returned as exactly 0 or SCALE.
CDF_BOUND = 10 * SCALE


@dataclass(frozen=True, slots=True)
class OptionParameters:
    """
    Inputs to a single pricing call.

    Attributes:
        spot: Current price of the underlying (scaled).
        strike: Strike price (scaled).
        time_to_expiry: Time to expiry in whole seconds (not scaled).
        volatility: Annualized volatility (scaled).
        rate: Annualized risk-free rate (scaled).
    """
    spot: int
    strike: int
    time_to_expiry: int
    volatility: int
    rate: int = 0

    @property
    def year_fraction(self) -> int:
        return year_fraction(self.time_to_expiry)


def year_fraction(seconds: int) -> int:
    """Convert a duration in seconds to a scaled fraction of a 365-day year."""
    return seconds * SCALE // SECONDS_PER_YEAR


def seconds_between(start: datetime, end: datetime) -> int:
    """Whole seconds from start to end, computed without floats."""
    delta = end - start
    return delta.days * 86400 + delta.seconds


def parameters_for(
    contract: OptionContract,
    spot: int,
    now: datetime,
    volatility: int,
    rate: int,
) -> OptionParameters:
    """Pricing inputs for a contract record at time `now`."""
    return OptionParameters(
        spot=spot,
        strike=contract.strike,
        time_to_expiry=seconds_between(now, contract.expiry),
        volatility=volatility,
        rate=rate,
    )


# ============================================================================
# NORMAL DISTRIBUTION FUNCTIONS
# ============================================================================

def normal_density(x: int) -> int:
    """Standard normal probability density exp(-x^2/2) / sqrt(2*pi)."""
    return div(exp(-(mul(x, x) // 2)), SQRT_2PI)


def cumulative_normal_distribution(x: int) -> int:
    """
    Standard normal cumulative distribution function.

    Uses N(-x) = 1 - N(x) to reduce to x >= 0, then
    N(x) = 1 - n(x) * (b1*t + b2*t^2 + b3*t^3 + b4*t^4 + b5*t^5)
    with t = 1 / (1 + p*x).
    """
    if x < -CDF_BOUND:
        return 0
    if x > CDF_BOUND:
        return SCALE
    if x < 0:
        return SCALE - cumulative_normal_distribution(-x)

    t = div(SCALE, SCALE + mul(AS_P, x))
    polynomial = mul(t, AS_B1 + mul(t, AS_B2 + mul(t, AS_B3 + mul(t, AS_B4 + mul(t, AS_B5)))))
    tail = mul(normal_density(x), polynomial)
    return max(0, min(SCALE, SCALE - tail))


# ============================================================================
# D1 AND D2
# ============================================================================

def _validate_inputs(params: OptionParameters) -> None:
    """Reject non-positive pricing inputs before any arithmetic runs."""
    if params.spot <= 0:
        raise InvalidInput(f"spot price must be positive, got {params.spot}")
    if params.strike <= 0:
        raise InvalidInput(f"strike must be positive, got {params.strike}")
    if params.time_to_expiry <= 0:
        raise InvalidInput(f"time_to_expiry must be positive, got {params.time_to_expiry}")
    if params.volatility <= 0:
        raise InvalidInput(f"volatility must be positive, got {params.volatility}")
    if params.rate < 0:
        raise InvalidInput(f"rate must be non-negative, got {params.rate}")


def calculate_d1_d2(params: OptionParameters) -> Tuple[int, int]:
    """
    Standardized intermediates of the Black-Scholes formula.

    d1 = (ln(S/K) + (r + sigma^2/2)*T) / (sigma*sqrt(T))
    d2 = d1 - sigma*sqrt(T)

    Raises:
        ArithmeticDegenerate: If spot/strike truncates to zero (spot * SCALE <
            strike), leaving ln(0), or if sigma*sqrt(T) truncates to zero
    """
    t = params.year_fraction
    ln_ratio = ln(div(params.spot, params.strike))
    drift = mul(params.rate + mul(params.volatility, params.volatility) // 2, t)
    vol_sqrt_time = mul(params.volatility, sqrt(t))
    if vol_sqrt_time == 0:
        raise ArithmeticDegenerate("volatility * sqrt(time) is zero")
    d1 = div(ln_ratio + drift, vol_sqrt_time)
    return d1, d1 - vol_sqrt_time


def discount_factor(params: OptionParameters) -> int:
    """e^(-r*T)."""
    return exp(-mul(params.rate, params.year_fraction))


# ============================================================================
# OPTION PRICES
# ============================================================================

def calculate_price(params: OptionParameters, kind: OptionKind) -> int:
    """
    Black-Scholes price per unit of underlying.

    C = max(0, S*N(d1) - K*e^(-rT)*N(d2))
    P = max(0, K*e^(-rT)*N(-d2) - S*N(-d1))

    The clamp absorbs small negative results from approximation error.

    Raises:
        InvalidInput: If spot, strike, time_to_expiry or volatility is non-positive
    """
    _validate_inputs(params)
    d1, d2 = calculate_d1_d2(params)
    discounted_strike = mul(params.strike, discount_factor(params))

    if kind is OptionKind.CALL:
        price = (mul(params.spot, cumulative_normal_distribution(d1))
                 - mul(discounted_strike, cumulative_normal_distribution(d2)))
    elif kind is OptionKind.PUT:
        price = (mul(discounted_strike, cumulative_normal_distribution(-d2))
                 - mul(params.spot, cumulative_normal_distribution(-d1)))
    else:
        raise InvalidInput(f"kind must be an OptionKind, got {kind!r}")
    return max(0, price)


def call_price(params: OptionParameters) -> int:
    return calculate_price(params, OptionKind.CALL)


def put_price(params: OptionParameters) -> int:
    return calculate_price(params, OptionKind.PUT)


# ============================================================================
# MONEYNESS
# ============================================================================

def intrinsic_value(spot: int, strike: int, kind: OptionKind) -> int:
    """
    Exercise value per unit of underlying.

    For calls: max(0, spot - strike)
    For puts: max(0, strike - spot)
    """
    if kind is OptionKind.CALL:
        return max(0, spot - strike)
    if kind is OptionKind.PUT:
        return max(0, strike - spot)
    raise InvalidInput(f"kind must be an OptionKind, got {kind!r}")


def is_in_the_money(spot: int, strike: int, kind: OptionKind) -> bool:
    if kind is OptionKind.CALL:
        return spot > strike
    if kind is OptionKind.PUT:
        return spot < strike
    raise InvalidInput(f"kind must be an OptionKind, got {kind!r}")


def time_value(params: OptionParameters, kind: OptionKind) -> int:
    """Price in excess of intrinsic value, floored at zero."""
    price = calculate_price(params, kind)
    return max(0, price - intrinsic_value(params.spot, params.strike, kind))
