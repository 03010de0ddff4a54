"""
test_vault.py - Unit tests for vault.py

Tests:
- write: validation, expiry window, collateral and refunds, dense ids
- buy: premium, fee, refunds, state and funds errors
- exercise: payouts, authorization, temporal window, double settlement
- settle_expired: unpurchased, out-of-the-money and automatic exercise
- Under-collateralized calls
- Administration: parameters, pause, fee withdrawal
- Events, queries and verbose output
"""

import pytest
from datetime import timedelta

from optvault import (
    SCALE,
    Vault,
    OptionKind,
    ContractStatus,
    EventType,
    ProtocolParameters,
    InvalidInput,
    InsufficientFunds,
    InvalidState,
    ProtocolInconsistency,
    mul,
    required_collateral,
    settlement_split,
)

from tests.helpers import fp, T0, EXPIRY, vault_snapshot


def write_call(vault, writer="alice", strike="2000", amount="1", deposit=None, expiry=EXPIRY):
    deposit = fp(amount) if deposit is None else deposit
    return vault.write(writer, "ETH", fp(strike), expiry, fp(amount), OptionKind.CALL, deposit)


def write_put(vault, writer="alice", strike="2000", amount="1", deposit=None, expiry=EXPIRY):
    deposit = mul(fp(strike), fp(amount)) if deposit is None else deposit
    return vault.write(writer, "ETH", fp(strike), expiry, fp(amount), OptionKind.PUT, deposit)


def buy_at(vault, cid, spot="2000", buyer="bob", extra=0):
    premium, fee = vault.quote_premium(cid, fp(spot))
    return vault.buy(buyer, cid, fp(spot), premium + fee + extra)


class TestWrite:
    """Tests for writing options."""

    def test_first_ids_are_dense(self, vault):
        assert [write_call(vault) for _ in range(3)] == [0, 1, 2]
        assert vault.next_contract_id == 3

    def test_written_record(self, vault):
        cid = write_call(vault)
        contract = vault.get_contract(cid)
        assert contract.writer == "alice"
        assert contract.buyer is None
        assert contract.collateral == fp("1")
        assert contract.premium == 0
        assert contract.created_at == T0
        assert contract.status is ContractStatus.WRITTEN

    def test_put_locks_strike_times_amount(self, vault):
        cid = write_put(vault, amount="2")
        assert vault.get_contract(cid).collateral == fp("4000")
        assert vault.total_locked_collateral() == fp("4000")

    def test_excess_deposit_refunded(self, vault):
        cid = write_call(vault, deposit=fp("1.5"))
        assert vault.get_contract(cid).collateral == fp("1")
        assert vault.balance_of("alice") == fp("0.5")
        assert vault.transfer_log[-1].reason == "refund"

    def test_insufficient_deposit(self, vault):
        with pytest.raises(InsufficientFunds):
            write_put(vault, deposit=fp("1999.999999"))
        assert vault.next_contract_id == 0

    def test_expiry_window_is_exclusive(self, vault):
        with pytest.raises(InvalidInput):
            write_call(vault, expiry=T0 + timedelta(hours=1))
        with pytest.raises(InvalidInput):
            write_call(vault, expiry=T0 + timedelta(days=365))
        assert write_call(vault, expiry=T0 + timedelta(hours=1, seconds=1)) == 0
        assert write_call(vault, expiry=T0 + timedelta(days=365) - timedelta(seconds=1)) == 1

    def test_expiry_in_past(self, vault):
        with pytest.raises(InvalidInput):
            write_call(vault, expiry=T0 - timedelta(days=1))

    @pytest.mark.parametrize("kwargs", [
        {"strike": "0"},
        {"amount": "0"},
        {"writer": ""},
    ])
    def test_invalid_arguments(self, vault, kwargs):
        with pytest.raises(InvalidInput):
            write_call(vault, **kwargs)

    def test_empty_underlying(self, vault):
        with pytest.raises(InvalidInput):
            vault.write("alice", " ", fp("2000"), EXPIRY, fp("1"), OptionKind.CALL, fp("1"))

    def test_invalid_kind(self, vault):
        with pytest.raises(InvalidInput):
            vault.write("alice", "ETH", fp("2000"), EXPIRY, fp("1"), "call", fp("1"))

    def test_put_collateral_rounding_to_zero(self, vault):
        with pytest.raises(InvalidInput):
            vault.write("alice", "ETH", 1, EXPIRY, 1, OptionKind.PUT, 10)


class TestBuy:
    """Tests for buying options."""

    def test_premium_and_fee(self, written_call):
        vault, cid = written_call
        premium, fee = vault.quote_premium(cid, fp("2000"))
        assert 0 < premium < fp("2000")
        assert fee == mul(premium, vault.parameters.fee_rate)

        paid = vault.buy("bob", cid, fp("2000"), premium + fee)

        assert paid == premium
        contract = vault.get_contract(cid)
        assert contract.buyer == "bob"
        assert contract.premium == premium
        assert contract.status is ContractStatus.PURCHASED
        assert vault.balance_of("alice") == premium
        assert vault.accumulated_fees == fee

    def test_overpayment_refunded(self, written_call):
        vault, cid = written_call
        buy_at(vault, cid, extra=5)
        assert vault.balance_of("bob") == 5
        assert vault.transfer_log[-1].reason == "refund"

    def test_underpayment_by_one(self, written_call):
        vault, cid = written_call
        premium, fee = vault.quote_premium(cid, fp("2000"))
        with pytest.raises(InsufficientFunds):
            vault.buy("bob", cid, fp("2000"), premium + fee - 1)
        assert vault.status(cid) is ContractStatus.WRITTEN

    def test_already_purchased(self, purchased_call):
        vault, cid = purchased_call
        with pytest.raises(InvalidState, match="already purchased"):
            buy_at(vault, cid, buyer="carol")

    def test_missing_contract(self, vault):
        with pytest.raises(InvalidState):
            vault.buy("bob", 0, fp("2000"), fp("100"))

    def test_at_expiry(self, written_call):
        vault, cid = written_call
        vault.advance_time(EXPIRY)
        with pytest.raises(InvalidState, match="expired"):
            vault.buy("bob", cid, fp("2000"), fp("1000"))

    def test_zero_spot(self, written_call):
        vault, cid = written_call
        with pytest.raises(InvalidInput):
            vault.buy("bob", cid, 0, fp("1000"))

    def test_put_premium(self, vault):
        cid = write_put(vault)
        premium = buy_at(vault, cid, spot="1900")
        assert premium > 0
        assert vault.get_contract(cid).premium == premium

    def test_quote_matches_buy(self, written_call):
        vault, cid = written_call
        vault.advance_time(T0 + timedelta(days=10))
        quoted, _ = vault.quote_premium(cid, fp("2100"))
        assert buy_at(vault, cid, spot="2100") == quoted


class TestExercise:
    """Tests for exercising purchased options."""

    def test_put_in_the_money(self, purchased_put):
        vault, cid = purchased_put
        vault.advance_time(EXPIRY)
        writer_before = vault.balance_of("alice")

        payout = vault.exercise("bob", cid, fp("1500"))

        assert payout == fp("500")
        contract = vault.get_contract(cid)
        assert contract.status is ContractStatus.EXERCISED_SETTLED
        assert contract.buyer_payout == fp("500")
        assert contract.writer_payout == fp("1500")
        assert contract.settlement_price == fp("1500")
        assert vault.balance_of("alice") - writer_before == fp("1500")
        assert vault.total_locked_collateral() == 0

    def test_call_in_the_money_within_collateral(self, purchased_call):
        vault, cid = purchased_call
        vault.advance_time(EXPIRY)
        payout = vault.exercise("bob", cid, fp("2000.5"))
        assert payout == fp("0.5")
        assert vault.get_contract(cid).writer_payout == fp("0.5")

    def test_out_of_the_money_returns_collateral(self, purchased_put):
        vault, cid = purchased_put
        vault.advance_time(EXPIRY)
        writer_before = vault.balance_of("alice")
        assert vault.exercise("bob", cid, fp("2500")) == 0
        contract = vault.get_contract(cid)
        assert contract.exercised
        assert contract.settled
        assert vault.balance_of("alice") - writer_before == fp("2000")

    def test_only_buyer(self, purchased_put):
        vault, cid = purchased_put
        vault.advance_time(EXPIRY)
        with pytest.raises(InvalidState, match="Only the buyer"):
            vault.exercise("alice", cid, fp("1500"))

    def test_unpurchased(self, written_call):
        vault, cid = written_call
        vault.advance_time(EXPIRY)
        with pytest.raises(InvalidState):
            vault.exercise("bob", cid, fp("2500"))

    def test_before_expiry(self, purchased_put):
        vault, cid = purchased_put
        vault.advance_time(EXPIRY - timedelta(seconds=1))
        with pytest.raises(InvalidState, match="not yet expired"):
            vault.exercise("bob", cid, fp("1500"))

    def test_twice(self, purchased_put):
        vault, cid = purchased_put
        vault.advance_time(EXPIRY)
        vault.exercise("bob", cid, fp("1500"))
        with pytest.raises(InvalidState, match="already settled"):
            vault.exercise("bob", cid, fp("1500"))

    def test_zero_spot(self, purchased_put):
        vault, cid = purchased_put
        vault.advance_time(EXPIRY)
        with pytest.raises(InvalidInput):
            vault.exercise("bob", cid, 0)


class TestUnderCollateralizedCall:
    """A call locks `amount` while its payout is priced in strike units."""

    def test_large_payout_rejected_without_state_change(self, purchased_call):
        vault, cid = purchased_call
        vault.advance_time(EXPIRY)
        before = vault_snapshot(vault)

        with pytest.raises(ProtocolInconsistency):
            vault.exercise("bob", cid, fp("3000"))

        assert vault_snapshot(vault) == before
        assert vault.status(cid) is ContractStatus.PURCHASED

    def test_settlement_split_raises(self, purchased_call):
        vault, cid = purchased_call
        with pytest.raises(ProtocolInconsistency):
            settlement_split(vault.get_contract(cid), fp("3000"))


class TestSettleExpired:
    """Tests for permissionless settlement."""

    def test_unpurchased_returns_collateral(self, written_call):
        vault, cid = written_call
        vault.advance_time(EXPIRY)
        assert vault.settle_expired("anyone", cid, fp("5000")) == 0
        assert vault.status(cid) is ContractStatus.EXPIRED_SETTLED
        assert vault.balance_of("alice") == fp("1")
        assert vault.event_log[-1].event_type is EventType.EXPIRED_SETTLED

    def test_purchased_out_of_the_money(self, purchased_put):
        vault, cid = purchased_put
        vault.advance_time(EXPIRY + timedelta(days=3))
        assert vault.settle_expired("keeper", cid, fp("2000")) == 0
        contract = vault.get_contract(cid)
        assert contract.status is ContractStatus.EXPIRED_SETTLED
        assert not contract.exercised
        assert contract.writer_payout == fp("2000")

    def test_purchased_in_the_money_exercised_for_buyer(self, purchased_put):
        vault, cid = purchased_put
        vault.advance_time(EXPIRY)
        assert vault.settle_expired("keeper", cid, fp("1800")) == fp("200")
        assert vault.status(cid) is ContractStatus.EXERCISED_SETTLED
        assert vault.balance_of("bob") == fp("200")
        assert vault.event_log[-1].event_type is EventType.EXERCISED

    def test_before_expiry(self, written_call):
        vault, cid = written_call
        with pytest.raises(InvalidState, match="not yet expired"):
            vault.settle_expired("anyone", cid, fp("2000"))

    def test_twice(self, written_call):
        vault, cid = written_call
        vault.advance_time(EXPIRY)
        vault.settle_expired("anyone", cid, fp("2000"))
        before = vault_snapshot(vault)
        with pytest.raises(InvalidState, match="already settled"):
            vault.settle_expired("anyone", cid, fp("2000"))
        assert vault_snapshot(vault) == before

    def test_after_exercise(self, purchased_put):
        vault, cid = purchased_put
        vault.advance_time(EXPIRY)
        vault.exercise("bob", cid, fp("1500"))
        with pytest.raises(InvalidState):
            vault.settle_expired("anyone", cid, fp("1500"))


class TestAdministration:
    """Tests for owner-only operations."""

    def test_update_parameters(self, written_call):
        vault, cid = written_call
        low, _ = vault.quote_premium(cid, fp("2000"))
        updated = vault.update_parameters("owner", default_volatility=fp("0.8"))
        assert updated.default_volatility == fp("0.8")
        high, _ = vault.quote_premium(cid, fp("2000"))
        assert high > low

    def test_update_parameters_non_owner(self, vault):
        with pytest.raises(InvalidState):
            vault.update_parameters("mallory", fee_rate=0)

    @pytest.mark.parametrize("changes", [
        {"default_volatility": 0},
        {"default_volatility": 2 * SCALE},
        {"default_rate": -1},
        {"default_rate": SCALE // 5},
        {"fee_rate": fp("0.06")},
    ])
    def test_update_parameters_out_of_range(self, vault, changes):
        before = vault.parameters
        with pytest.raises(InvalidInput):
            vault.update_parameters("owner", **changes)
        assert vault.parameters == before

    @pytest.mark.parametrize("changes", [
        {"volatility": fp("0.5")},
        {"fee_rate": 0, "rate": fp("0.01")},
    ])
    def test_update_parameters_unknown_name(self, vault, changes):
        before = vault.parameters
        with pytest.raises(InvalidInput, match="Unknown protocol parameter"):
            vault.update_parameters("owner", **changes)
        assert vault.parameters == before

    def test_default_parameters(self):
        p = ProtocolParameters()
        assert p.default_volatility == fp("0.3")
        assert p.default_rate == fp("0.05")
        assert p.fee_rate == fp("0.01")

    def test_pause_blocks_lifecycle(self, written_call):
        vault, cid = written_call
        vault.pause("owner")
        with pytest.raises(InvalidState, match="paused"):
            write_call(vault)
        with pytest.raises(InvalidState, match="paused"):
            buy_at(vault, cid)
        vault.unpause("owner")
        assert write_call(vault) == 1

    def test_pause_non_owner(self, vault):
        with pytest.raises(InvalidState):
            vault.pause("mallory")
        assert not vault.paused

    def test_withdraw_fees(self, purchased_call):
        vault, cid = purchased_call
        fee = vault.accumulated_fees
        assert fee > 0
        assert vault.withdraw_fees("owner", "treasury") == fee
        assert vault.accumulated_fees == 0
        assert vault.balance_of("treasury") == fee
        assert vault.transfer_log[-1].reason == "fees"
        assert vault.transfer_log[-1].contract_id is None

    def test_withdraw_fees_non_owner(self, purchased_call):
        vault, _ = purchased_call
        with pytest.raises(InvalidState):
            vault.withdraw_fees("mallory", "mallory")

    def test_withdraw_nothing(self, vault):
        assert vault.withdraw_fees("owner", "treasury") == 0
        assert vault.transfer_log == []


class TestEventsAndQueries:
    """Tests for the event log, time and read-only queries."""

    def test_event_sequence(self, purchased_put):
        vault, cid = purchased_put
        vault.advance_time(EXPIRY)
        vault.exercise("bob", cid, fp("1500"))
        assert [e.event_type for e in vault.event_log] == [
            EventType.WRITTEN, EventType.PURCHASED, EventType.EXERCISED,
        ]
        assert [e.sequence_number for e in vault.event_log] == [0, 1, 2]
        assert all(e.contract_id == cid for e in vault.event_log)
        assert vault.event_log[0].collateral == fp("2000")
        assert vault.event_log[2].buyer_payout == fp("500")

    def test_failed_operation_emits_nothing(self, written_call):
        vault, cid = written_call
        with pytest.raises(InvalidState):
            vault.exercise("bob", cid, fp("2500"))
        assert len(vault.event_log) == 1

    def test_time_cannot_go_backwards(self, vault):
        with pytest.raises(ValueError):
            vault.advance_time(T0 - timedelta(seconds=1))

    def test_get_missing_contract(self, vault):
        with pytest.raises(InvalidState, match="does not exist"):
            vault.get_contract(0)
        with pytest.raises(InvalidState):
            vault.get_contract(-1)

    def test_list_contracts_by_status(self, purchased_put):
        vault, cid = purchased_put
        other = write_call(vault)
        assert [c.contract_id for c in vault.list_contracts(ContractStatus.PURCHASED)] == [cid]
        assert [c.contract_id for c in vault.list_contracts(ContractStatus.WRITTEN)] == [other]
        assert len(vault.list_contracts()) == 2

    def test_greeks_query(self, purchased_call):
        vault, cid = purchased_call
        g = vault.greeks(cid, fp("2000"))
        assert 0 < g.delta < SCALE
        assert g.gamma > 0

    def test_conservation_report(self, purchased_put):
        vault, cid = purchased_put
        report = vault.verify_collateral_conservation()
        assert report['valid']
        assert report['locked'] == fp("2000")
        vault.advance_time(EXPIRY)
        vault.exercise("bob", cid, fp("1500"))
        report = vault.verify_collateral_conservation()
        assert report['valid']
        assert report['locked'] == 0

    def test_required_collateral(self):
        assert required_collateral(OptionKind.CALL, fp("2000"), fp("3")) == fp("3")
        assert required_collateral(OptionKind.PUT, fp("2000"), fp("3")) == fp("6000")


class TestVerboseOutput:
    """Verbose vaults print one line per applied event and per rejection."""

    def test_success_and_rejection_lines(self, capsys):
        vault = Vault("loud", T0)
        cid = write_call(vault)
        with pytest.raises(InvalidState):
            vault.exercise("bob", cid, fp("2500"))
        out = capsys.readouterr().out
        assert "✓ WRITTEN #0 writer=alice" in out
        assert "✗ REJECTED exercise" in out

    def test_quiet_vault(self, capsys):
        vault = Vault("quiet", T0, verbose=False)
        write_call(vault)
        assert capsys.readouterr().out == ""
