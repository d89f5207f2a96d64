"""
LeaseDesk billing services.

Payment lifecycle and billing reconciliation for the LeaseDesk property portal.
"""

__version__ = "1.0.0"
