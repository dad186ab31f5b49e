"""fieldops: multi-tenant field operations backend (check-ins, claims, competitors, journals, leads, reports)."""

__version__ = "1.0.0"
