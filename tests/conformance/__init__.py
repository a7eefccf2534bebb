"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the vault and DPO engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Double-entry accounting and DPO supply
2. collateral.py - LTV bound, single active deposit, origination health
3. atomicity.py - Failed operations change nothing
4. idempotency.py - Duplicate execution handling
5. determinism.py - Reproducible behavior
6. concurrency.py - Serialized reads-then-writes per position and pair

These tests use hypothesis for property-based testing.
"""
