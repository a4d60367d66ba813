"""On-disk persistence: saved sessions and the usage ledger."""
