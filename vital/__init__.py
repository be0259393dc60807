"""Vital: session-to-profile reconciliation and access gating."""

__version__ = "1.0.0"
