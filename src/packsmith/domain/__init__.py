"""Domain types: pack records, proposals, governance state, errors and results."""
