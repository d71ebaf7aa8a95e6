"""Pure rating domain logic (no I/O)."""
