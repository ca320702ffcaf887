"""
Lending Pool Platform
=====================

Epoch-based settlement of a two-tranche (senior/junior) lending pool with
first-loss cover layers.

Subpackages
-----------
engine
    Pool state, P/L waterfall, redemption ledgers and epoch settlement.
unit_tests
    pytest suite.
"""

__version__ = "0.1.0"
