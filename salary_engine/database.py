from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from salary_engine.core.config import settings

DATABASE_URL = settings.database_url

# SQLite connections are shared with the threadpool FastAPI runs sync routes on
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    """
    Session Provider: Provides a database session per request.
    Commits and rollbacks happen in the service layer.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db():
    """Create tables for every registered model. Called from the startup lifespan."""
    from salary_engine.models import salary_increment, salary_structure  # noqa: F401
    Base.metadata.create_all(bind=engine)
