"""Governance: lock gate, base pointer, proposals, evidence ledger and adoption."""
