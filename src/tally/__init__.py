"""Tally - payroll reconciliation, review gate and pack lifecycle."""

__version__ = "0.1.0"
