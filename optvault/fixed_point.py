"""
fixed_point.py - Deterministic Fixed-Point Arithmetic

Scaled-integer arithmetic (18 decimals) and transcendental approximations
evaluated without floating point, so every evaluator produces the same bits.

Provides:
- Basic arithmetic (mul, div, tdiv, add, sub, absolute)
- Transcendentals (exp, ln, sqrt) and integer power
- Conversions (to_fixed, from_fixed, round_fixed, from_decimal, to_decimal)

Truncation policy:
- Every product and quotient is rescaled exactly once.
- Division truncates toward zero for both signs.
- Series are cut at TAYLOR_TERMS terms, or earlier once a term's magnitude
  drops below NEGLIGIBLE_TERM.

The approximations carry a bounded relative error, not arbitrary precision:
below 1e-7 for exp on |x| <= 5 (1e-14 on |x| <= 2), about 1e-14 absolute
for ln on [0.01, 1000], degrading to ~0.2% for exp just below
EXP_SPLIT_THRESHOLD where 20 Taylor terms are not enough.
"""

from decimal import Decimal, ROUND_DOWN, localcontext
from typing import Union

from .core import SCALE, HALF_SCALE, E, ArithmeticDegenerate, InvalidInput


# Series truncation
TAYLOR_TERMS = 20
NEGLIGIBLE_TERM = 1_000

# exp() evaluates the Taylor series directly up to this argument, and splits
# larger arguments into integer and fractional parts.
EXP_SPLIT_THRESHOLD = 10 * SCALE

# exp(130) * SCALE still fits a 256-bit word; anything larger is rejected.
MAX_EXP_ARGUMENT = 130 * SCALE

TWO = 2 * SCALE

# ln() takes this many square roots after reducing into (0.5, 2), leaving
# x within LN_SERIES_RADIUS of 1 (2^(1/8) - 1 < 0.091).
LN_SQRT_STEPS = 3
LN_SERIES_RADIUS = 91 * SCALE // 1000


def tdiv(numerator: int, denominator: int) -> int:
    """
    Plain integer division truncating toward zero.

    Python's // floors, so -7 // 2 == -4 while tdiv(-7, 2) == -3. Signed
    rescalings in this module go through tdiv.
    """
    quotient = abs(numerator) // abs(denominator)
    if (numerator < 0) != (denominator < 0):
        return -quotient
    return quotient


# ============================================================================
# BASIC ARITHMETIC
# ============================================================================

def mul(a: int, b: int) -> int:
    """Fixed-point product a*b/SCALE."""
    if a == 0 or b == 0:
        return 0
    return tdiv(a * b, SCALE)


def div(a: int, b: int) -> int:
    """
    Fixed-point quotient a*SCALE/b.

    Raises:
        ArithmeticDegenerate: If b is zero
    """
    if b == 0:
        raise ArithmeticDegenerate("Division by zero")
    return tdiv(a * SCALE, b)


def add(a: int, b: int) -> int:
    return a + b


def sub(a: int, b: int) -> int:
    """
    Unsigned subtraction a - b.

    Raises:
        ArithmeticDegenerate: If b > a
    """
    if b > a:
        raise ArithmeticDegenerate(f"Subtraction underflow: {a} - {b}")
    return a - b


def absolute(x: int) -> int:
    """Magnitude of a signed fixed-point value."""
    return -x if x < 0 else x


# ============================================================================
# EXPONENTIAL
# ============================================================================

def _exp_series(x: int) -> int:
    """Taylor series of e^x for 0 <= x, truncated at TAYLOR_TERMS terms."""
    total = SCALE
    term = SCALE
    for n in range(1, TAYLOR_TERMS + 1):
        term = mul(term, x) // n
        total += term
        if term < NEGLIGIBLE_TERM:
            break
    return total


def exp(x: int) -> int:
    """
    e^x for a signed fixed-point x.

    Negative arguments are evaluated as 1 / e^(-x). Arguments above
    EXP_SPLIT_THRESHOLD are split: the integer part is applied by repeated
    multiplication with E, the fractional part by the Taylor series.

    Raises:
        ArithmeticDegenerate: If x > MAX_EXP_ARGUMENT
    """
    if x == 0:
        return SCALE
    if x < 0:
        if x < -MAX_EXP_ARGUMENT:
            return 0
        return div(SCALE, exp(-x))
    if x > MAX_EXP_ARGUMENT:
        raise ArithmeticDegenerate(f"exp argument too large: {x}")
    if x <= EXP_SPLIT_THRESHOLD:
        return _exp_series(x)

    whole = x // SCALE
    fraction = x - whole * SCALE
    result = SCALE
    for _ in range(whole):
        result = mul(result, E)
    return mul(result, _exp_series(fraction))


# ============================================================================
# NATURAL LOGARITHM
# ============================================================================

def _ln_series(x: int) -> int:
    """
    Alternating series ln(x) = u - u^2/2 + u^3/3 - ... with u = x - 1.

    Callers keep |u| <= LN_SERIES_RADIUS so the series has converged to
    below NEGLIGIBLE_TERM well inside TAYLOR_TERMS terms.
    """
    u = x - SCALE
    total = 0
    power_of_u = u
    for k in range(1, TAYLOR_TERMS + 1):
        term = tdiv(power_of_u, k)
        total += term if k % 2 else -term
        if absolute(term) < NEGLIGIBLE_TERM:
            break
        power_of_u = mul(power_of_u, u)
    return total


def ln(x: int) -> int:
    """
    Natural logarithm of a positive fixed-point x.

    Range-reduces by E (accumulating +/-1 per step) until x lies in
    (0.5, 2), then takes LN_SQRT_STEPS square roots to bring x within
    LN_SERIES_RADIUS of 1, so ln(x) = 2^LN_SQRT_STEPS * ln(x^(1/2^LN_SQRT_STEPS))
    and the alternating series around 1 applies.

    Raises:
        ArithmeticDegenerate: If x <= 0
    """
    if x == 0:
        raise ArithmeticDegenerate("ln(0) undefined")
    if x < 0:
        raise ArithmeticDegenerate(f"ln of negative value undefined: {x}")

    result = 0
    while x >= TWO:
        x = div(x, E)
        result += SCALE
    while x <= HALF_SCALE:
        x = mul(x, E)
        result -= SCALE
    for _ in range(LN_SQRT_STEPS):
        x = sqrt(x)
    return result + _ln_series(x) * 2**LN_SQRT_STEPS


# ============================================================================
# ROOTS AND POWERS
# ============================================================================

def sqrt(x: int) -> int:
    """
    Square root by Babylonian iteration.

    Seeded at (x + SCALE) / 2, which is never below the true root, and
    iterated while the estimate strictly decreases. Returns the truncated
    root, so perfect squares come back exact.

    Raises:
        ArithmeticDegenerate: If x < 0
    """
    if x == 0:
        return 0
    if x < 0:
        raise ArithmeticDegenerate(f"sqrt of negative value undefined: {x}")

    estimate = (x + SCALE) // 2
    while True:
        refined = (x * SCALE // estimate + estimate) // 2
        if refined >= estimate:
            return estimate
        estimate = refined


def power(x: int, y: int) -> int:
    """
    x^y for a non-negative integer exponent y (not scaled).

    Raises:
        InvalidInput: If y is negative
    """
    if y < 0:
        raise InvalidInput(f"exponent must be non-negative, got {y}")
    result = SCALE
    for _ in range(y):
        result = mul(result, x)
    return result


# ============================================================================
# CONVERSIONS
# ============================================================================

def to_fixed(n: int) -> int:
    """Scale a plain integer into fixed point."""
    return n * SCALE


def from_fixed(x: int) -> int:
    """Integer part of a fixed-point value (truncates toward zero)."""
    return tdiv(x, SCALE)


def round_fixed(x: int) -> int:
    """Round a fixed-point value to the nearest integer, halves away from zero."""
    rounded = (absolute(x) + HALF_SCALE) // SCALE
    return -rounded if x < 0 else rounded


def from_decimal(value: Union[Decimal, str, int, float]) -> int:
    """
    Convert a human-readable number to fixed point, truncating past 18 decimals.

    Floats go through str() first, so 0.1 means "0.1" and not its binary
    expansion.
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if not value.is_finite():
        raise InvalidInput(f"value must be finite, got {value}")
    with localcontext() as ctx:
        ctx.prec = 80
        return int((value * SCALE).to_integral_value(rounding=ROUND_DOWN))


def to_decimal(x: int) -> Decimal:
    """Exact Decimal representation of a fixed-point value."""
    with localcontext() as ctx:
        ctx.prec = 80
        return Decimal(x) / Decimal(SCALE)
