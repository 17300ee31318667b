"""Consensus classification: throttling, retries and vote reconciliation."""
