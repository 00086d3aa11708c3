"""
ReviewDesk - Database Configuration
SQLAlchemy ORM setup for PostgreSQL (SQLite for local dev and tests)
"""
from flask_sqlalchemy import SQLAlchemy
import logging
logger = logging.getLogger(__name__)
from sqlalchemy import insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


db = SQLAlchemy(model_class=Base)


def init_db(app):
    """Initialize database with app"""
    db.init_app(app)

    with app.app_context():
        # Import models to register them
        from reviewdesk.models import db_models  # noqa

        # Create all tables
        db.create_all()

        logger.info("✓ Database tables created")


def insert_or_skip(model, values: dict, conflict_columns: list) -> bool:
    """
    Insert one row, skipping it if it collides with a unique constraint.

    The uniqueness check happens inside the database, so two processes racing
    on the same key still end up with exactly one row. Commits on success.

    Returns:
        True if the row was inserted, False if it already existed
    """
    dialect = db.session.get_bind().dialect.name

    if dialect == 'postgresql':
        stmt = pg_insert(model).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
    elif dialect == 'sqlite':
        stmt = sqlite_insert(model).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
    else:
        stmt = insert(model).values(**values)

    try:
        result = db.session.execute(stmt)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return False

    return result.rowcount == 1
