"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the option vault.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Collateral is neither created nor destroyed
2. atomicity.py - All-or-nothing operations and reentrancy rejection
3. determinism.py - Reproducible pricing and settlement
4. temporal.py - Expiry windows and event ordering

These tests use hypothesis for property-based testing.
"""
