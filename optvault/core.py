"""
Core types for the option vault.

This module provides the foundational data structures shared by the pricing
kernel and the lifecycle manager:
1. Fixed-point constants: SCALE and the scaled mathematical constants
2. Exceptions: VaultError and the domain-specific error types
3. Enums: OptionKind, ContractStatus, EventType
4. Immutable records: OptionContract, Transfer, VaultEvent
5. Configuration: ProtocolParameters with validated ranges

Records are frozen dataclasses. The vault never mutates a record in place;
every state transition replaces it with a new instance.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


# ============================================================================
# FIXED-POINT CONSTANTS
# ============================================================================
#
# Every quantity in the vault is an int scaled by SCALE (18 decimals).
# The constants below are pre-scaled and truncated, never computed at load
# time, so every evaluator starts from the same bits.
#
SCALE = 10**18
HALF_SCALE = SCALE // 2

# Euler's number e, scaled.
E = 2_718281828459045235

# sqrt(2*pi), scaled.
SQRT_2PI = 2_506628274631000502

# Seconds in a 365-day year, used for year-fraction conversion.
SECONDS_PER_YEAR = 365 * 24 * 60 * 60

# Days per year for per-day theta.
DAYS_PER_YEAR = 365

# Greeks quoted per one percentage point divide by this.
PERCENT = 100


# ============================================================================
# EXCEPTIONS
# ============================================================================

class VaultError(Exception):
    """Base exception for all vault-related errors."""
    pass


class InvalidInput(VaultError, ValueError):
    """Raised for zero, negative or out-of-range arguments and bad expiry windows."""
    pass


class InsufficientFunds(VaultError):
    """Raised when deposited or paid value is below a computed requirement."""
    pass


class InvalidState(VaultError):
    """Raised for the wrong caller, the wrong temporal window, or a terminal/missing record."""
    pass


class ArithmeticDegenerate(VaultError, ArithmeticError):
    """Raised on division by zero, unsigned underflow, or a zero denominator inside a formula."""
    pass


class ProtocolInconsistency(VaultError):
    """Raised when a computed payout exceeds the collateral posted for a contract."""
    pass


# ============================================================================
# ENUMS
# ============================================================================

class OptionKind(Enum):
    """European option kind. Exactly two variants."""
    CALL = "call"
    PUT = "put"


class ContractStatus(Enum):
    """
    Lifecycle status of a contract, derived from the record's fields.

    WRITTEN: collateral locked, no buyer yet.
    PURCHASED: buyer registered and premium paid.
    EXERCISED_SETTLED: terminal, paid out in-the-money.
    EXPIRED_SETTLED: terminal, collateral returned to the writer.
    """
    WRITTEN = "written"
    PURCHASED = "purchased"
    EXERCISED_SETTLED = "exercised_settled"
    EXPIRED_SETTLED = "expired_settled"


class EventType(Enum):
    """Kind of lifecycle event emitted by the vault."""
    WRITTEN = "written"
    PURCHASED = "purchased"
    EXERCISED = "exercised"
    EXPIRED_SETTLED = "expired_settled"


# ============================================================================
# CONFIGURATION
# ============================================================================

MAX_VOLATILITY = 2 * SCALE
MAX_RATE = SCALE // 5
MAX_FEE_RATE = SCALE // 20


@dataclass(frozen=True, slots=True)
class ProtocolParameters:
    """
    Global scalar parameters used when pricing a purchase.

    Attributes:
        default_volatility: Annualized volatility, in (0, 2) scaled.
        default_rate: Annualized risk-free rate, in [0, 0.2) scaled.
        fee_rate: Protocol fee charged on top of the premium, in [0, 0.05] scaled.
    """
    default_volatility: int = 3 * SCALE // 10
    default_rate: int = 5 * SCALE // 100
    fee_rate: int = SCALE // 100

    def __post_init__(self):
        if not 0 < self.default_volatility < MAX_VOLATILITY:
            raise InvalidInput(
                f"default_volatility must be in (0, {MAX_VOLATILITY}), got {self.default_volatility}"
            )
        if not 0 <= self.default_rate < MAX_RATE:
            raise InvalidInput(f"default_rate must be in [0, {MAX_RATE}), got {self.default_rate}")
        if not 0 <= self.fee_rate <= MAX_FEE_RATE:
            raise InvalidInput(f"fee_rate must be in [0, {MAX_FEE_RATE}], got {self.fee_rate}")


# ============================================================================
# CONTRACT RECORD
# ============================================================================

@dataclass(frozen=True, slots=True)
class OptionContract:
    """
    One written option and the collateral it holds.

    Attributes:
        contract_id: Dense id assigned at write time, starting at 0.
        writer: Party that locked the collateral and receives the premium.
        buyer: Party that paid the premium (None until purchase).
        underlying: Identifier of the underlying asset.
        strike: Strike price (scaled).
        expiry: Expiry instant.
        amount: Notional amount of underlying (scaled).
        collateral: Value locked at write time (scaled). Never changes.
        premium: Premium paid by the buyer (0 until purchase).
        kind: OptionKind.CALL or OptionKind.PUT.
        exercised: True once paid out in-the-money.
        settled: True once the collateral has been fully disbursed.
        created_at: Vault time at which the contract was written.
        settlement_price: Spot used for the terminal transition.
        buyer_payout: Collateral paid to the buyer at settlement.
        writer_payout: Collateral returned to the writer at settlement.
    """
    contract_id: int
    writer: str
    buyer: Optional[str]
    underlying: str
    strike: int
    expiry: datetime
    amount: int
    collateral: int
    premium: int
    kind: OptionKind
    exercised: bool = False
    settled: bool = False
    created_at: Optional[datetime] = None
    settlement_price: Optional[int] = None
    buyer_payout: int = 0
    writer_payout: int = 0

    @property
    def status(self) -> ContractStatus:
        if self.settled:
            if self.exercised:
                return ContractStatus.EXERCISED_SETTLED
            return ContractStatus.EXPIRED_SETTLED
        if self.buyer is not None:
            return ContractStatus.PURCHASED
        return ContractStatus.WRITTEN

    @property
    def is_terminal(self) -> bool:
        return self.settled

    def __repr__(self) -> str:
        return (f"OptionContract(#{self.contract_id} {self.kind.value} {self.underlying} "
                f"K={self.strike} amt={self.amount} {self.status.value})")


# ============================================================================
# TRANSFERS AND EVENTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Transfer:
    """
    A single outbound value transfer from the vault to an external party.

    Attributes:
        recipient: Party credited with the value.
        amount: Value transferred (scaled, strictly positive).
        reason: Short tag, e.g. "premium", "refund", "payout", "collateral_return".
        contract_id: Contract the transfer belongs to (None for fee withdrawals).
    """
    recipient: str
    amount: int
    reason: str
    contract_id: Optional[int] = None

    def __post_init__(self):
        if not self.recipient or not self.recipient.strip():
            raise ValueError("Transfer recipient cannot be empty")
        if self.amount <= 0:
            raise ValueError(f"Transfer amount must be positive, got {self.amount}")

    def __repr__(self) -> str:
        target = f" #{self.contract_id}" if self.contract_id is not None else ""
        return f"Transfer({self.amount} → {self.recipient} [{self.reason}{target}])"


@dataclass(frozen=True, slots=True)
class VaultEvent:
    """
    Immutable record of one applied lifecycle operation, for external observers.

    Amount fields that do not apply to an event type stay 0.
    """
    event_type: EventType
    contract_id: int
    sequence_number: int
    timestamp: datetime
    writer: str
    buyer: Optional[str] = None
    collateral: int = 0
    premium: int = 0
    fee: int = 0
    spot: Optional[int] = None
    buyer_payout: int = 0
    writer_payout: int = 0

    def __repr__(self) -> str:
        w = 72
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            f"┌{bar}┐",
            f"│{pad(' Event #' + str(self.sequence_number) + ': ' + self.event_type.value)}│",
            f"├{bar}┤",
            f"│{pad('   contract_id  : ' + str(self.contract_id))}│",
            f"│{pad('   timestamp    : ' + str(self.timestamp))}│",
            f"│{pad('   writer       : ' + self.writer)}│",
            f"│{pad('   buyer        : ' + str(self.buyer))}│",
        ]
        for label, value in (
            ("collateral", self.collateral),
            ("premium", self.premium),
            ("fee", self.fee),
            ("buyer_payout", self.buyer_payout),
            ("writer_payout", self.writer_payout),
        ):
            if value:
                lines.append(f"│{pad(f'   {label:<13}: {value}')}│")
        if self.spot is not None:
            lines.append(f"│{pad('   spot         : ' + str(self.spot))}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)
