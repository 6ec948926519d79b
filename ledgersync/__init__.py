"""LedgerSync - multi-provider banking sync engine."""
