from contextlib import contextmanager
from typing import Iterator
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from sqlalchemy.engine.url import make_url
from aromasouq.config import DATABASE_URL

# SQLite needs check_same_thread off when FastAPI hands sessions across threads
url = make_url(DATABASE_URL)
engine_kwargs = {"pool_pre_ping": True}
if url.get_backend_name() == "sqlite":
    engine_kwargs["connect_args"] = {"check_same_thread": False}
else:
    engine_kwargs.update(pool_size=5, max_overflow=10)

engine = create_engine(DATABASE_URL, **engine_kwargs)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """Run a block as one atomic commit.

    Commits when the block exits normally and rolls back on any exception,
    which is re-raised. Helpers called inside the block must not commit.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
