"""
UPI payment simulator: wallet accounts, phone-derived payment identifiers and
peer-to-peer transfers exposed over a FastAPI service.
"""

__version__ = "1.0.0"
