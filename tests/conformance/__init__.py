"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the raffle lending ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. atomicity.py - All-or-nothing operation semantics
2. invariants.py - Pool totals, utilization and raffle ticket sums
3. determinism.py - Reproducible draws and state

These tests use hypothesis for property-based testing.
"""
