"""Outbound integration sync engine for applicant-tracking data."""

__version__ = "0.1.0"
