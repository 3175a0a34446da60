from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from heartbeat_importer.config import DATABASE_URL

# SQLite needs cross-thread access for the background worker.
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

class Base(DeclarativeBase):
	pass
