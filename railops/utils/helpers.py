"""
Helper utility functions.
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import uuid4


def setup_logging(level: str = "INFO"):
    """Configure logging for the application."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching what SQLite stores."""
    return datetime.utcnow()


def get_timestamp() -> str:
    """Get current timestamp in ISO format."""
    return utcnow().isoformat()


def new_id() -> str:
    """Generate an entity id."""
    return uuid4().hex


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp written by get_timestamp()/isoformat()."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)
