"""SQLAlchemy async persistence (PostgreSQL via asyncpg, SQLite via aiosqlite)."""
