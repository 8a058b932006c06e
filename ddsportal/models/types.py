"""
Database type utilities for cross-database compatibility.

Provides SQLite-compatible versions of PostgreSQL types.
"""
from sqlalchemy import JSON, TypeDecorator


class JSONType(TypeDecorator):
    """
    Platform-independent JSON type.

    Uses PostgreSQL's JSONB type when available, otherwise
    falls back to the generic JSON type (TEXT on SQLite).
    """

    impl = JSON(none_as_null=True)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            from sqlalchemy.dialects.postgresql import JSONB
            return dialect.type_descriptor(JSONB(none_as_null=True))
        return dialect.type_descriptor(JSON(none_as_null=True))
