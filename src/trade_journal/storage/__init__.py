"""Journal persistence: in-memory and SQLAlchemy stores."""
