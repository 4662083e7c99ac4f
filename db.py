from flask import current_app, g
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models import Base

IN_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def init_db(app):
    """Create the engine and tables, and register the session teardown."""
    url = app.config["DATABASE_URL"]
    options = {}
    if url in IN_MEMORY_URLS:
        # one shared connection, or every session would see an empty database
        options = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    engine = create_engine(url, **options)
    Base.metadata.create_all(engine)
    app.extensions["db_engine"] = engine
    app.extensions["db_sessionmaker"] = sessionmaker(bind=engine, expire_on_commit=False)
    app.teardown_appcontext(close_db)
    return engine


def get_db():
    """SQLAlchemy session bound to the current app context."""
    if "db" not in g:
        g.db = current_app.extensions["db_sessionmaker"]()
    return g.db


def close_db(exc=None):
    db = g.pop("db", None)
    if db is not None:
        if exc is not None:
            db.rollback()
        db.close()
