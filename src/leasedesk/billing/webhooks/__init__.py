"""Processor webhook decoding and ledger reconciliation."""
