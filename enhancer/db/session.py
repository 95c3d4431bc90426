"""
Database connection management.
"""
from sqlmodel import create_engine, SQLModel


def build_engine(database_url: str):
    """Create an engine, allowing SQLite use across threads."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def create_db_and_tables(engine):
    """Create database tables."""
    from enhancer.db import models  # noqa: F401  registers tables

    SQLModel.metadata.create_all(engine)
