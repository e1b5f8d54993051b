"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the loan registry and the
ledger it settles on. Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Loan operations only redistribute value; escrow backs open loans
2. atomicity.py - A rejected operation leaves no trace
3. idempotency.py - Duplicate execution handling
4. loan_properties.py - Amount, due date and state machine properties
5. serialization.py - Operations from concurrent threads behave as if run one at a time

Most of these tests use hypothesis for property-based testing.
"""
