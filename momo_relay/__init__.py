"""
FusionPay payment relay.

Creates payment sessions on the mobile-money gateway, correlates the
asynchronous webhook notifications back to local transactions and applies
them exactly once.
"""

__version__ = "1.0.0"
