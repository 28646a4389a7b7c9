"""Song document authority, operation application and client reconciliation."""
