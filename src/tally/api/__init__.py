"""HTTP API for Tally."""
