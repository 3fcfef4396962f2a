from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import sessionmaker, declarative_base

Base = declarative_base()


def build_engine(database_url: str) -> Engine:
    # Only sqlite needs connect_args; Postgres gets the pooled defaults
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

    return create_engine(
        database_url,
        pool_pre_ping=True,          # helps recycle stale connections
        pool_size=5,
        max_overflow=10,
    )


def build_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
