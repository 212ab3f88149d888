"""Binary record format and the append-only log."""
