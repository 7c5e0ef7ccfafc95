"""PostgreSQL persistence (psycopg + psycopg_pool)."""
from .database import Database

__all__ = ["Database"]
