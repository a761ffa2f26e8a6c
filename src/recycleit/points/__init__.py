"""Points ledger."""
