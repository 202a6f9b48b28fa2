"""
ABC Bank Management System

Account management and transaction processing with atomic transfers,
Decimal money handling and a hash-chained audit trail.
"""

__version__ = "1.0.0"
