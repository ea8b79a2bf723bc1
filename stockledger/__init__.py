"""
Stock ledger: inventory movements with an append-only audit trail.
"""
__version__ = "1.0.0"
