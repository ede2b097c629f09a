"""Glaze: a FastAPI + SQLAlchemy server bootstrap for PostgreSQL schemas."""

GLAZE_VERSION = "0.1.0"

__all__ = ["GLAZE_VERSION"]
