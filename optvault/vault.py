"""
vault.py - Option Contract Lifecycle Manager

The Vault class is the central state manager for written options. It is the
only module that mutates contract state, and it owns the collateral locked
by every contract from write until the terminal transition.

Key responsibilities:
    - Allocates dense contract ids (0, 1, 2, ...) into a single record table
    - Prices purchases through the fixed-point Black-Scholes model
    - Enforces the lifecycle: written -> purchased -> exercised/expired settled
    - Disburses collateral exactly once, to buyer and/or writer
    - Every operation is atomic: a failure leaves no trace

Operation discipline:
    Each lifecycle operation runs validate -> compute -> mutate-and-mark-terminal
    -> transfer. Records are marked terminal before any value leaves the vault,
    so a reentrant call made from a transfer hook sees a settled record and is
    rejected by the state guard.
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import fields, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .core import (
    # Types
    OptionContract, OptionKind, ContractStatus, EventType,
    ProtocolParameters, Transfer, VaultEvent,
    # Exceptions
    InvalidInput, InsufficientFunds, InvalidState, ProtocolInconsistency,
)
from .fixed_point import mul, to_decimal
from .black_scholes import (
    calculate_price, intrinsic_value, is_in_the_money, parameters_for,
)
from .greeks import Greeks, compute_greeks


# Expiry must fall strictly inside (now + MIN_EXPIRY_OFFSET, now + MAX_EXPIRY_OFFSET).
MIN_EXPIRY_OFFSET = timedelta(hours=1)
MAX_EXPIRY_OFFSET = timedelta(days=365)

# Called after every outbound transfer is credited. This is where external
# parties get control back, so it is the reentrancy surface.
TransferHook = Callable[["Vault", Transfer], None]


def required_collateral(kind: OptionKind, strike: int, amount: int) -> int:
    """
    Collateral a writer must lock.

    Calls lock the notional amount; puts lock strike * amount.
    """
    if kind is OptionKind.CALL:
        return amount
    if kind is OptionKind.PUT:
        return mul(strike, amount)
    raise InvalidInput(f"kind must be an OptionKind, got {kind!r}")


def premium_for(
    contract: OptionContract,
    spot: int,
    now: datetime,
    parameters: ProtocolParameters,
) -> Tuple[int, int]:
    """
    Premium and protocol fee for buying a contract at `spot`.

    Returns:
        (premium, fee) where premium = price_per_unit * amount and
        fee = premium * fee_rate.
    """
    params = parameters_for(
        contract, spot, now, parameters.default_volatility, parameters.default_rate
    )
    premium = mul(calculate_price(params, contract.kind), contract.amount)
    return premium, mul(premium, parameters.fee_rate)


def settlement_split(contract: OptionContract, spot: int) -> Tuple[int, int]:
    """
    Split a contract's collateral between buyer and writer at `spot`.

    Returns:
        (buyer_payout, writer_payout), always summing to the collateral.

    Raises:
        ProtocolInconsistency: If the in-the-money payout exceeds the collateral
    """
    if not is_in_the_money(spot, contract.strike, contract.kind):
        return 0, contract.collateral
    payout = mul(intrinsic_value(spot, contract.strike, contract.kind), contract.amount)
    if payout > contract.collateral:
        raise ProtocolInconsistency(
            f"Contract {contract.contract_id}: payout {payout} exceeds collateral {contract.collateral}"
        )
    return payout, contract.collateral - payout


class Vault:
    """
    Option writing, purchase and settlement with collateral custody.

    Every lifecycle operation takes the caller's identity as its first
    argument and either commits completely or raises a VaultError with no
    state change.

    Thread Safety:
        Not thread-safe. Operations are assumed to be serialized.

    Example:
        vault = Vault("main", datetime(2025, 1, 1))
        cid = vault.write("alice", "ETH", strike, expiry, amount, OptionKind.CALL, deposit)
        vault.buy("bob", cid, spot, payment)
        vault.advance_time(expiry)
        vault.exercise("bob", cid, spot_at_expiry)
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        parameters: Optional[ProtocolParameters] = None,
        owner: str = "owner",
        verbose: bool = True,
        on_transfer: Optional[TransferHook] = None,
    ):
        """
        Create a vault.

        Args:
            name: Vault identifier
            initial_time: Starting time for the vault clock (default: 1970-01-01)
            parameters: Protocol parameters (default: ProtocolParameters())
            owner: Party allowed to change parameters, pause and withdraw fees
            verbose: Print a result line for every operation (default: True)
            on_transfer: Optional hook invoked after each outbound transfer
        """
        self.name = name
        self.owner = owner
        self.parameters = parameters or ProtocolParameters()
        self.paused = False
        self.accumulated_fees = 0
        self.balances: Dict[str, int] = defaultdict(int)
        self.transfer_log: List[Transfer] = []
        self.event_log: List[VaultEvent] = []
        self.verbose = verbose
        self.on_transfer = on_transfer
        self._contracts: List[OptionContract] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self._next_sequence: int = 0
        self._depth = 0

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the vault."""
        return self._current_time

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the vault's logical clock.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # QUERIES (read-only)
    # ========================================================================

    @property
    def next_contract_id(self) -> int:
        return len(self._contracts)

    def get_contract(self, contract_id: int) -> OptionContract:
        """
        Return the record for a contract id.

        Raises:
            InvalidState: If no contract has that id
        """
        if not isinstance(contract_id, int) or not 0 <= contract_id < len(self._contracts):
            raise InvalidState(f"Contract {contract_id} does not exist")
        return self._contracts[contract_id]

    def status(self, contract_id: int) -> ContractStatus:
        return self.get_contract(contract_id).status

    def list_contracts(self, status: Optional[ContractStatus] = None) -> List[OptionContract]:
        """All records in id order, optionally filtered by status."""
        if status is None:
            return list(self._contracts)
        return [c for c in self._contracts if c.status is status]

    def balance_of(self, party: str) -> int:
        """Total value the vault has transferred out to a party."""
        return self.balances.get(party, 0)

    def total_locked_collateral(self) -> int:
        return sum(c.collateral for c in self._contracts if not c.settled)

    def quote_premium(self, contract_id: int, spot: int) -> Tuple[int, int]:
        """
        Price a purchase without performing it.

        Returns:
            (premium, fee) at the current time and protocol parameters.
        """
        if spot <= 0:
            raise InvalidInput(f"spot must be positive, got {spot}")
        return premium_for(self.get_contract(contract_id), spot, self._current_time, self.parameters)

    def greeks(self, contract_id: int, spot: int) -> Greeks:
        """Greeks of one unit of a contract at `spot`, the current time and parameters."""
        contract = self.get_contract(contract_id)
        params = parameters_for(
            contract, spot, self._current_time,
            self.parameters.default_volatility, self.parameters.default_rate,
        )
        return compute_greeks(params, contract.kind)

    def verify_collateral_conservation(self) -> Dict[str, Any]:
        """
        Check that collateral is neither created nor destroyed.

        For every settled contract the buyer payout plus the writer payout
        must equal the collateral, and the transfer log must show exactly
        that much leaving the vault for it. Unsettled contracts must not have
        paid anything out yet.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every contract conserves its collateral
            - 'locked': int - collateral still held by unsettled contracts
            - 'discrepancies': List[Dict] - contract, expected, actual
        """
        disbursed: Dict[int, int] = defaultdict(int)
        for transfer in self.transfer_log:
            if transfer.reason in ("payout", "collateral_return"):
                disbursed[transfer.contract_id] += transfer.amount

        discrepancies = []
        for contract in self._contracts:
            expected = contract.collateral if contract.settled else 0
            recorded = contract.buyer_payout + contract.writer_payout
            actual = disbursed.get(contract.contract_id, 0)
            if recorded != expected or actual != expected:
                discrepancies.append({
                    'contract': contract.contract_id,
                    'expected': expected,
                    'recorded': recorded,
                    'actual': actual,
                })

        return {
            'valid': len(discrepancies) == 0,
            'locked': self.total_locked_collateral(),
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # LIFECYCLE OPERATIONS (mutating)
    # ========================================================================

    def write(
        self,
        writer: str,
        underlying: str,
        strike: int,
        expiry: datetime,
        amount: int,
        kind: OptionKind,
        deposited_value: int,
    ) -> int:
        """
        Write a new option and lock its collateral.

        Args:
            writer: Party writing the option
            underlying: Underlying asset identifier
            strike: Strike price (scaled)
            expiry: Expiry instant, strictly inside (now + 1h, now + 365d)
            amount: Notional amount (scaled)
            kind: OptionKind.CALL or OptionKind.PUT
            deposited_value: Value sent with the call; any excess over the
                required collateral is refunded

        Returns:
            The new contract id.

        Raises:
            InvalidInput: Bad underlying, strike, amount, kind or expiry window
            InsufficientFunds: If deposited_value is below the required collateral
            InvalidState: If the vault is paused
        """
        with self._atomic("write"):
            self._require_not_paused()
            if not writer or not writer.strip():
                raise InvalidInput("writer cannot be empty")
            if not underlying or not underlying.strip():
                raise InvalidInput("underlying cannot be empty")
            if not isinstance(kind, OptionKind):
                raise InvalidInput(f"kind must be an OptionKind, got {kind!r}")
            if strike <= 0:
                raise InvalidInput(f"strike must be positive, got {strike}")
            if amount <= 0:
                raise InvalidInput(f"amount must be positive, got {amount}")

            now = self._current_time
            if not now + MIN_EXPIRY_OFFSET < expiry < now + MAX_EXPIRY_OFFSET:
                raise InvalidInput(
                    f"expiry {expiry} must be between {now + MIN_EXPIRY_OFFSET} "
                    f"and {now + MAX_EXPIRY_OFFSET}"
                )

            required = required_collateral(kind, strike, amount)
            if required == 0:
                raise InvalidInput("required collateral rounds to zero")
            if deposited_value < required:
                raise InsufficientFunds(
                    f"deposit {deposited_value} below required collateral {required}"
                )

            contract = OptionContract(
                contract_id=len(self._contracts),
                writer=writer,
                buyer=None,
                underlying=underlying,
                strike=strike,
                expiry=expiry,
                amount=amount,
                collateral=required,
                premium=0,
                kind=kind,
                created_at=now,
            )
            self._contracts.append(contract)
            self._emit(EventType.WRITTEN, contract, collateral=required)

            excess = deposited_value - required
            if excess > 0:
                self._transfer(writer, excess, "refund", contract.contract_id)
            return contract.contract_id

    def buy(self, buyer: str, contract_id: int, spot: int, payment: int) -> int:
        """
        Buy a written option at the model premium.

        The premium goes straight to the writer; the fee accrues to the
        protocol; any overpayment is refunded.

        Returns:
            The premium paid.

        Raises:
            InvalidState: Missing contract, already bought, expired, or paused
            InvalidInput: If spot is not positive
            InsufficientFunds: If payment < premium + fee
        """
        with self._atomic("buy"):
            self._require_not_paused()
            contract = self.get_contract(contract_id)
            if contract.buyer is not None:
                raise InvalidState(f"Contract {contract_id} already purchased by {contract.buyer}")
            if self._current_time >= contract.expiry:
                raise InvalidState(f"Contract {contract_id} expired at {contract.expiry}")
            if not buyer or not buyer.strip():
                raise InvalidInput("buyer cannot be empty")
            if spot <= 0:
                raise InvalidInput(f"spot must be positive, got {spot}")

            premium, fee = premium_for(contract, spot, self._current_time, self.parameters)
            total_cost = premium + fee
            if payment < total_cost:
                raise InsufficientFunds(f"payment {payment} below premium plus fee {total_cost}")

            purchased = replace(contract, buyer=buyer, premium=premium)
            self._contracts[contract_id] = purchased
            self.accumulated_fees += fee
            self._emit(EventType.PURCHASED, purchased, premium=premium, fee=fee, spot=spot)

            if premium > 0:
                self._transfer(contract.writer, premium, "premium", contract_id)
            overpayment = payment - total_cost
            if overpayment > 0:
                self._transfer(buyer, overpayment, "refund", contract_id)
            return premium

    def exercise(self, caller: str, contract_id: int, spot_at_expiry: int) -> int:
        """
        Exercise a purchased option at or after expiry.

        In the money, the buyer receives intrinsic * amount and the writer the
        rest of the collateral; otherwise the writer gets all of it back.

        Returns:
            The amount paid to the buyer.

        Raises:
            InvalidState: Caller is not the buyer, before expiry, already
                exercised or settled, or paused
            InvalidInput: If spot_at_expiry is not positive
            ProtocolInconsistency: If the payout exceeds the collateral
        """
        with self._atomic("exercise"):
            self._require_not_paused()
            contract = self.get_contract(contract_id)
            if contract.buyer is None or caller != contract.buyer:
                raise InvalidState(f"Only the buyer can exercise contract {contract_id}")
            if self._current_time < contract.expiry:
                raise InvalidState(f"Contract {contract_id} not yet expired")
            if contract.exercised or contract.settled:
                raise InvalidState(f"Contract {contract_id} already settled")
            if spot_at_expiry <= 0:
                raise InvalidInput(f"spot_at_expiry must be positive, got {spot_at_expiry}")

            buyer_payout, writer_payout = settlement_split(contract, spot_at_expiry)
            self._settle(contract, spot_at_expiry, buyer_payout, writer_payout,
                         exercised=True, event_type=EventType.EXERCISED)
            return buyer_payout

    def settle_expired(self, caller: str, contract_id: int, spot_at_expiry: int) -> int:
        """
        Settle an expired contract on anyone's request.

        Unpurchased contracts return all collateral to the writer. Purchased
        contracts that finish in the money are exercised on the buyer's behalf;
        the rest return collateral to the writer. This keeps writer collateral
        from being stranded by a buyer who never exercises.

        Returns:
            The amount paid to the buyer.

        Raises:
            InvalidState: Already settled, before expiry, missing, or paused
            InvalidInput: If spot_at_expiry is not positive
            ProtocolInconsistency: If an automatic payout exceeds the collateral
        """
        with self._atomic("settle_expired"):
            self._require_not_paused()
            contract = self.get_contract(contract_id)
            if contract.settled:
                raise InvalidState(f"Contract {contract_id} already settled")
            if self._current_time < contract.expiry:
                raise InvalidState(f"Contract {contract_id} not yet expired")
            if spot_at_expiry <= 0:
                raise InvalidInput(f"spot_at_expiry must be positive, got {spot_at_expiry}")

            if contract.buyer is not None and is_in_the_money(spot_at_expiry, contract.strike, contract.kind):
                buyer_payout, writer_payout = settlement_split(contract, spot_at_expiry)
                self._settle(contract, spot_at_expiry, buyer_payout, writer_payout,
                             exercised=True, event_type=EventType.EXERCISED)
                return buyer_payout

            self._settle(contract, spot_at_expiry, 0, contract.collateral,
                         exercised=False, event_type=EventType.EXPIRED_SETTLED)
            return 0

    # ========================================================================
    # ADMINISTRATION (owner only)
    # ========================================================================

    def update_parameters(self, caller: str, **changes: int) -> ProtocolParameters:
        """
        Replace protocol parameters; ranges are validated by ProtocolParameters.

        Raises:
            InvalidState: If caller is not the owner
            InvalidInput: If a name is not a protocol parameter or a new
                value is out of range
        """
        self._require_owner(caller)
        unknown = sorted(set(changes) - {f.name for f in fields(ProtocolParameters)})
        if unknown:
            raise InvalidInput(f"Unknown protocol parameter(s): {', '.join(unknown)}")
        self.parameters = replace(self.parameters, **changes)
        return self.parameters

    def pause(self, caller: str) -> None:
        self._require_owner(caller)
        self.paused = True

    def unpause(self, caller: str) -> None:
        self._require_owner(caller)
        self.paused = False

    def withdraw_fees(self, caller: str, recipient: str) -> int:
        """Drain the fee accumulator to `recipient`. Returns the amount withdrawn."""
        self._require_owner(caller)
        with self._atomic("withdraw_fees"):
            amount = self.accumulated_fees
            self.accumulated_fees = 0
            if amount > 0:
                self._transfer(recipient, amount, "fees")
            return amount

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _require_not_paused(self) -> None:
        if self.paused:
            raise InvalidState(f"Vault {self.name} is paused")

    def _require_owner(self, caller: str) -> None:
        if caller != self.owner:
            raise InvalidState(f"{caller} is not the owner of vault {self.name}")

    def _settle(
        self,
        contract: OptionContract,
        spot: int,
        buyer_payout: int,
        writer_payout: int,
        exercised: bool,
        event_type: EventType,
    ) -> None:
        """Mark a contract terminal, then disburse its collateral."""
        settled = replace(
            contract,
            exercised=exercised,
            settled=True,
            settlement_price=spot,
            buyer_payout=buyer_payout,
            writer_payout=writer_payout,
        )
        # Terminal before any value leaves the vault.
        self._contracts[contract.contract_id] = settled
        self._emit(event_type, settled, spot=spot,
                   buyer_payout=buyer_payout, writer_payout=writer_payout)

        if buyer_payout > 0:
            self._transfer(contract.buyer, buyer_payout, "payout", contract.contract_id)
        if writer_payout > 0:
            self._transfer(contract.writer, writer_payout, "collateral_return", contract.contract_id)

    def _transfer(self, recipient: str, amount: int, reason: str,
                  contract_id: Optional[int] = None) -> None:
        transfer = Transfer(recipient, amount, reason, contract_id)
        self.balances[recipient] += amount
        self.transfer_log.append(transfer)
        if self.on_transfer is not None:
            self.on_transfer(self, transfer)

    def _emit(self, event_type: EventType, contract: OptionContract, **amounts: Any) -> VaultEvent:
        event = VaultEvent(
            event_type=event_type,
            contract_id=contract.contract_id,
            sequence_number=self._next_sequence,
            timestamp=self._current_time,
            writer=contract.writer,
            buyer=contract.buyer,
            **amounts,
        )
        self._next_sequence += 1
        self.event_log.append(event)
        return event

    @contextmanager
    def _atomic(self, operation: str) -> Iterator[None]:
        """
        Run an operation all-or-nothing.

        Snapshots every mutable field and restores it if anything escapes,
        including exceptions raised by the transfer hook. Reentrant calls nest
        their own snapshots.
        """
        contracts = list(self._contracts)
        balances = dict(self.balances)
        fees = self.accumulated_fees
        transfer_count = len(self.transfer_log)
        event_count = len(self.event_log)
        sequence = self._next_sequence

        self._depth += 1
        try:
            yield
        except Exception as exc:
            self._contracts = contracts
            self.balances = defaultdict(int, balances)
            self.accumulated_fees = fees
            del self.transfer_log[transfer_count:]
            del self.event_log[event_count:]
            self._next_sequence = sequence
            if self.verbose:
                print(f"✗ REJECTED {operation}: {exc}")
            raise
        finally:
            self._depth -= 1

        if self.verbose and self._depth == 0:
            for event in self.event_log[event_count:]:
                print(f"✓ {_describe(event)}")

    def __repr__(self) -> str:
        return (f"Vault({self.name}, {len(self._contracts)} contracts, "
                f"locked={to_decimal(self.total_locked_collateral())}, "
                f"fees={to_decimal(self.accumulated_fees)})")


def _describe(event: VaultEvent) -> str:
    """One-line summary of an event for verbose output."""
    parts = [f"{event.event_type.value.upper()} #{event.contract_id}", f"writer={event.writer}"]
    if event.buyer:
        parts.append(f"buyer={event.buyer}")
    for label in ("collateral", "premium", "fee", "buyer_payout", "writer_payout"):
        value = getattr(event, label)
        if value:
            parts.append(f"{label}={to_decimal(value)}")
    if event.spot is not None:
        parts.append(f"spot={to_decimal(event.spot)}")
    return " ".join(parts)
