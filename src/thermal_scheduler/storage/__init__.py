"""SQLite persistence for supervisor logs."""
