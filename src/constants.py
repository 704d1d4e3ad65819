"""Project-wide constants."""

DB_SCHEMA = "studio_agent"
