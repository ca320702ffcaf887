"""
Lending Pool Platform Unit Tests
================================

This package contains unit tests for the settlement engine.

Test Modules
------------
test_arithmetic
    Integer primitives and the senior yield tracker.
test_waterfall
    Profit policies, cover profit split, loss absorption and recovery.
test_redemption_ledger
    FIFO epoch queue, lazy investor replay, cancellation and withdrawal.
test_tranche_vault
    Share minting, pricing, locking and lockout.
test_epoch_manager
    Settlement scenarios, covenant budgets, flex call, preconditions,
    atomicity and reentrancy.
test_loader
    Pool JSON schema and semantic validation.
test_reporting
    Settlement reports and the audit trail.
test_config
    Environment-driven settings.
test_simulation
    Seeded multi-epoch runs checked against the pool invariants.

Running Tests
-------------
Execute all tests with pytest::

    pytest lendpool_platform/unit_tests/ -v

Or run specific test modules::

    pytest lendpool_platform/unit_tests/test_waterfall.py -v
"""
