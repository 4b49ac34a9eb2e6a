"""
DocVault — role-based document vault with access-checked file delivery.
"""

__version__ = "1.0.0"
