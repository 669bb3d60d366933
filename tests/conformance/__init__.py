"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the bitlend loan engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. atomicity.py - All-or-nothing operation semantics
2. invariants.py - Collateral ratio, id uniqueness, terminal states, overflow
3. determinism.py - Reproducible behavior and replay

These tests use hypothesis for property-based testing.
"""
