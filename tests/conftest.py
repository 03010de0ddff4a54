"""
conftest.py - Shared pytest fixtures for optvault tests

Provides vaults in the common lifecycle states:
- Empty vault at 2025-01-01
- One written (unpurchased) call
- One purchased call and one purchased put
"""

import pytest

from optvault import Vault, OptionKind

from tests.helpers import fp, T0, EXPIRY


@pytest.fixture
def vault():
    """Fresh vault at 2025-01-01 with default parameters."""
    return Vault("test", T0, verbose=False)


@pytest.fixture
def written_call(vault):
    """Vault with one unpurchased ETH call: strike 2000, amount 1, 30 days."""
    cid = vault.write("alice", "ETH", fp("2000"), EXPIRY, fp("1"), OptionKind.CALL, fp("1"))
    return vault, cid


@pytest.fixture
def purchased_call(written_call):
    """The written call bought by bob at spot 2000."""
    vault, cid = written_call
    premium, fee = vault.quote_premium(cid, fp("2000"))
    vault.buy("bob", cid, fp("2000"), premium + fee)
    return vault, cid


@pytest.fixture
def purchased_put(vault):
    """ETH put (strike 2000, amount 1, 30 days) written by alice and bought by bob at 2000."""
    cid = vault.write("alice", "ETH", fp("2000"), EXPIRY, fp("1"), OptionKind.PUT, fp("2000"))
    premium, fee = vault.quote_premium(cid, fp("2000"))
    vault.buy("bob", cid, fp("2000"), premium + fee)
    return vault, cid
