"""
greeks.py - Fixed-Point Option Sensitivities

Delta, Gamma, Theta, Vega, Rho and Lambda for European options, built from
the same d1/d2 intermediates as the pricing model.

Every function recomputes d1/d2 from the parameter record it is given;
there is no shared cache and no module state.

Quoting conventions:
- theta is per calendar day (annual theta / 365)
- vega is per one volatility point (/ 100)
- rho is per one rate point (/ 100)
- leverage (lambda) is delta * spot / price
"""

from __future__ import annotations
from dataclasses import dataclass

from .core import (
    SCALE, DAYS_PER_YEAR, PERCENT,
    OptionKind,
    InvalidInput, ArithmeticDegenerate,
)
from .fixed_point import mul, div, sqrt, tdiv
from .black_scholes import (
    OptionParameters,
    calculate_d1_d2,
    calculate_price,
    cumulative_normal_distribution,
    discount_factor,
    normal_density,
    _validate_inputs,
)


@dataclass(frozen=True, slots=True)
class Greeks:
    """All sensitivities of one option at one spot, as signed fixed-point values."""
    delta: int
    gamma: int
    theta: int
    vega: int
    rho: int
    leverage: int


def _check_kind(kind: OptionKind) -> None:
    if kind is not OptionKind.CALL and kind is not OptionKind.PUT:
        raise InvalidInput(f"kind must be an OptionKind, got {kind!r}")


# ============================================================================
# FIRST-ORDER GREEKS
# ============================================================================

def delta(params: OptionParameters, kind: OptionKind) -> int:
    """dV/dS: N(d1) for calls, N(d1) - 1 for puts."""
    _validate_inputs(params)
    _check_kind(kind)
    d1, _ = calculate_d1_d2(params)
    n_d1 = cumulative_normal_distribution(d1)
    if kind is OptionKind.CALL:
        return n_d1
    return n_d1 - SCALE


def gamma(params: OptionParameters) -> int:
    """
    d2V/dS2 = n(d1) / (S * sigma * sqrt(T)). Same for calls and puts.

    Raises:
        ArithmeticDegenerate: If the denominator truncates to zero
    """
    _validate_inputs(params)
    d1, _ = calculate_d1_d2(params)
    denominator = mul(mul(params.spot, params.volatility), sqrt(params.year_fraction))
    if denominator == 0:
        raise ArithmeticDegenerate("gamma denominator is zero")
    return div(normal_density(d1), denominator)


def theta(params: OptionParameters, kind: OptionKind) -> int:
    """
    dV/dt per calendar day.

    Annual theta:
        call: -S*n(d1)*sigma / (2*sqrt(T)) - r*K*e^(-rT)*N(d2)
        put:  -S*n(d1)*sigma / (2*sqrt(T)) + r*K*e^(-rT)*N(-d2)
    """
    _validate_inputs(params)
    _check_kind(kind)
    d1, d2 = calculate_d1_d2(params)
    decay = div(
        mul(mul(params.spot, normal_density(d1)), params.volatility),
        2 * sqrt(params.year_fraction),
    )
    carry = mul(mul(params.rate, params.strike), discount_factor(params))
    if kind is OptionKind.CALL:
        annual = -decay - mul(carry, cumulative_normal_distribution(d2))
    else:
        annual = -decay + mul(carry, cumulative_normal_distribution(-d2))
    return tdiv(annual, DAYS_PER_YEAR)


def vega(params: OptionParameters) -> int:
    """dV/dsigma per volatility point: S*n(d1)*sqrt(T) / 100."""
    _validate_inputs(params)
    d1, _ = calculate_d1_d2(params)
    annual = mul(mul(params.spot, normal_density(d1)), sqrt(params.year_fraction))
    return annual // PERCENT


def rho(params: OptionParameters, kind: OptionKind) -> int:
    """
    dV/dr per rate point.

    call:  K*T*e^(-rT)*N(d2) / 100
    put:  -K*T*e^(-rT)*N(-d2) / 100
    """
    _validate_inputs(params)
    _check_kind(kind)
    _, d2 = calculate_d1_d2(params)
    exposure = mul(mul(params.strike, params.year_fraction), discount_factor(params))
    if kind is OptionKind.CALL:
        return mul(exposure, cumulative_normal_distribution(d2)) // PERCENT
    return -(mul(exposure, cumulative_normal_distribution(-d2)) // PERCENT)


def leverage(params: OptionParameters, kind: OptionKind) -> int:
    """
    Lambda (elasticity): delta * S / V.

    Raises:
        InvalidInput: If the option price is zero
    """
    option_price = calculate_price(params, kind)
    if option_price == 0:
        raise InvalidInput("option price is zero, leverage undefined")
    return mul(delta(params, kind), div(params.spot, option_price))


def compute_greeks(params: OptionParameters, kind: OptionKind) -> Greeks:
    """
    All six Greeks for one option.

    Leverage is reported as 0 when the option is worthless at this spot.
    """
    if calculate_price(params, kind) == 0:
        elasticity = 0
    else:
        elasticity = leverage(params, kind)
    return Greeks(
        delta=delta(params, kind),
        gamma=gamma(params),
        theta=theta(params, kind),
        vega=vega(params),
        rho=rho(params, kind),
        leverage=elasticity,
    )
