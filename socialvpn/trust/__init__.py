"""
Trust management.

Admission of friend certificates and the Pending / Allowed / Blocked
access lifecycle.
"""

from .gate import TrustGate

__all__ = ["TrustGate"]
