"""SQLite persistence for generation records and usage aggregates."""
