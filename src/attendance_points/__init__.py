"""Attendance violation point ledger with fixed and good-behavior roll-off."""

__version__ = "0.1.0"
