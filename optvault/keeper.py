"""
keeper.py - Expiry Keeper

Drives settlement of expired contracts so that writer collateral is never
left waiting on a buyer who does not exercise.

Execution order each step():
1. Advance vault time
2. Find every unsettled contract whose expiry has passed (id order)
3. Look up the underlying's spot and call settle_expired on it

A contract whose in-the-money payout exceeds its collateral cannot be
settled at that spot. It is skipped and recorded in `skipped`, and the step
carries on with the remaining contracts.

The vault's event log is the audit trail; the keeper keeps no other state.
"""

from __future__ import annotations
from datetime import datetime
from typing import Dict, List

from .core import VaultEvent, VaultError, ProtocolInconsistency
from .pricing_source import PricingSource
from .vault import Vault


class ExpiryKeeper:
    """
    Settles expired contracts using spots from a pricing source.

    Settlement is permissionless, so the keeper acts under its own identity.
    A missing spot aborts the step with VaultError; contracts settled earlier
    in the same step stay settled.

    Attributes:
        skipped: Contract id -> reason, for contracts the last step could not settle.
    """

    def __init__(self, vault: Vault, pricing_source: PricingSource, identity: str = "keeper"):
        self.vault = vault
        self.pricing_source = pricing_source
        self.identity = identity
        self.skipped: Dict[int, str] = {}

    def due(self) -> List[int]:
        """Ids of unsettled contracts at or past expiry."""
        now = self.vault.current_time
        return [
            c.contract_id for c in self.vault.list_contracts()
            if not c.settled and c.expiry <= now
        ]

    def step(self, timestamp: datetime) -> List[VaultEvent]:
        """
        Advance time and settle everything that has expired.

        Returns:
            Events emitted by the settlements in this step.
        """
        self.vault.advance_time(timestamp)
        start = len(self.vault.event_log)
        self.skipped = {}

        for contract_id in self.due():
            contract = self.vault.get_contract(contract_id)
            spot = self.pricing_source.get_spot(contract.underlying, timestamp)
            if spot is None:
                raise VaultError(
                    f"Missing spot for underlying '{contract.underlying}' of contract {contract_id}"
                )
            try:
                self.vault.settle_expired(self.identity, contract_id, spot)
            except ProtocolInconsistency as exc:
                self.skipped[contract_id] = str(exc)

        return self.vault.event_log[start:]

    def run(self, timestamps: List[datetime]) -> List[VaultEvent]:
        """Step through a sequence of timestamps and collect every settlement event."""
        events: List[VaultEvent] = []
        for timestamp in timestamps:
            events.extend(self.step(timestamp))
        return events
