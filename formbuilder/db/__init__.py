"""Form Builder Database — SQLAlchemy tables and session management for the SQL backend."""
