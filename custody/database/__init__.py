"""Pooled PostgreSQL access shared by the API and the sweep worker."""
from custody.database.connection import (
    close_connection_pool,
    get_connection_pool,
    get_db_connection,
)

__all__ = ['close_connection_pool', 'get_connection_pool', 'get_db_connection']
