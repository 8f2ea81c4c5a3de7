from .connection import get_connection, init_database
from .local_store import LocalStore

__all__ = ["get_connection", "init_database", "LocalStore"]
