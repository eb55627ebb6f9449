"""Database engine, session and table setup."""
