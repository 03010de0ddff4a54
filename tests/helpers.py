"""
helpers.py - Shared test helpers

Fixed-point conversion shortcuts, a float Black-Scholes reference used as an
oracle for the fixed-point model, and a vault state snapshot for atomicity
checks.
"""

import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Tuple

from scipy.stats import norm

from optvault import SCALE, Vault, from_decimal


T0 = datetime(2025, 1, 1)
EXPIRY = T0 + timedelta(days=30)


def fp(value) -> int:
    """Fixed-point value from a decimal string or number."""
    return from_decimal(value)


def as_float(x: int) -> float:
    """Fixed-point value as a float, for comparison with the float oracle only."""
    return float(Decimal(x) / Decimal(SCALE))


def reference_black_scholes(s: float, k: float, days: float, v: float, r: float) -> Dict[str, float]:
    """
    Float Black-Scholes with a 365-day year.

    Returned Greeks follow the vault's quoting: theta per day, vega and rho
    per percentage point.
    """
    t = days / 365.0
    sqrt_t = math.sqrt(t)
    d1 = (math.log(s / k) + (r + 0.5 * v * v) * t) / (v * sqrt_t)
    d2 = d1 - v * sqrt_t
    disc = math.exp(-r * t)
    pdf = norm.pdf(d1)
    decay = -s * pdf * v / (2 * sqrt_t)
    return {
        'd1': d1,
        'd2': d2,
        'call': s * norm.cdf(d1) - k * disc * norm.cdf(d2),
        'put': k * disc * norm.cdf(-d2) - s * norm.cdf(-d1),
        'call_delta': norm.cdf(d1),
        'put_delta': norm.cdf(d1) - 1.0,
        'gamma': pdf / (s * v * sqrt_t),
        'call_theta': (decay - r * k * disc * norm.cdf(d2)) / 365.0,
        'put_theta': (decay + r * k * disc * norm.cdf(-d2)) / 365.0,
        'vega': s * pdf * sqrt_t / 100.0,
        'call_rho': k * t * disc * norm.cdf(d2) / 100.0,
        'put_rho': -k * t * disc * norm.cdf(-d2) / 100.0,
    }


def vault_snapshot(vault: Vault) -> Tuple:
    """Everything an operation may mutate, in comparable form."""
    return (
        vault.list_contracts(),
        dict(vault.balances),
        vault.accumulated_fees,
        list(vault.event_log),
        list(vault.transfer_log),
        vault.next_contract_id,
    )
