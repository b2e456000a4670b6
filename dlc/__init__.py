"""
Discreet Log Contracts
SLO DLC v1

Two-party Bitcoin contracts settled by an oracle's Schnorr-style signature
over the realized outcome. The oracle never co-signs a transaction.
"""

__version__ = "1.0.0"
