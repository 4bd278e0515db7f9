"""Pure domain types for the royalty kernel (no I/O)."""
