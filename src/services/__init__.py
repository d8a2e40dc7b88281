"""Infrastructure services for the Stonegate operations service."""

from services.database import check_connection, init_db

__all__ = [
    "check_connection",
    "init_db",
]
