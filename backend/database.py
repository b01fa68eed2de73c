"""
Database connection for the Duty Hours Monitor
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from config import DATABASE_URL

if DATABASE_URL.startswith("sqlite"):
    # Local dev / tests. In-memory databases must share one connection.
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if DATABASE_URL in ("sqlite://", "sqlite:///:memory:") else None,
    )
else:
    engine = create_engine(
        DATABASE_URL,
        pool_size=10,           # Base connections to keep open
        max_overflow=20,        # Additional connections when busy (30 total max)
        pool_timeout=30,        # Seconds to wait for connection before error
        pool_recycle=1800,      # Recycle connections after 30 min (prevents stale)
        pool_pre_ping=True,     # Test connections before using (handles dropped connections)
    )
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
