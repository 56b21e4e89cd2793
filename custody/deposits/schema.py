"""
Schema setup from the SQL files in migrations/.
"""
import glob
import os
import logging
from typing import List
from custody.database.connection import get_db_connection

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))),
    "migrations"
)


def migration_files(directory: str = MIGRATIONS_DIR) -> List[str]:
    """SQL migration files in the order they are applied (by file name)."""
    return sorted(glob.glob(os.path.join(directory, "*.sql")))


def init_database(directory: str = MIGRATIONS_DIR) -> List[str]:
    """
    Apply every migration in one transaction.

    Migrations are written to be re-runnable (IF NOT EXISTS / OR REPLACE), so
    this runs on every startup.

    Returns:
        Names of the applied migration files

    Raises:
        FileNotFoundError: If the directory holds no migrations
        psycopg2.Error: If a migration fails (nothing is applied)
    """
    files = migration_files(directory)
    if not files:
        raise FileNotFoundError(f"No migrations found in {directory}")

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            for path in files:
                with open(path, 'r') as f:
                    cur.execute(f.read())
                logger.debug(f"Applied migration {os.path.basename(path)}")

    applied = [os.path.basename(path) for path in files]
    logger.info(f"Deposit schema ready ({len(applied)} migration(s))")
    return applied
