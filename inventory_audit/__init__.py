"""
Inventory Audit Service.

Inventory tracking backend that records an append-only audit trail of every
change made to inventory items.
"""

__version__ = "1.0.0"
