"""SQLite storage: engine policy, tables and migrations."""
