from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from app import config

DATABASE_URL = config.database_url()


def make_engine(url: str):
    # Bounded waits on connect and pool checkout; sqlite also waits on its write lock
    timeout = config.db_connect_timeout()
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False, "timeout": timeout})
    connect_args = {"connect_timeout": timeout} if url.startswith("postgresql") else {}
    return create_engine(url, connect_args=connect_args, pool_timeout=timeout, pool_pre_ping=True)


engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
