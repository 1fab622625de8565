# harvester/database.py
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def create_session_factory(database_url: str) -> sessionmaker:
    engine = create_engine(database_url, pool_pre_ping=True)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(session_factory: sessionmaker):
    # Importing the models registers their tables on Base
    from harvester import models  # noqa: F401

    Base.metadata.create_all(bind=session_factory.kw["bind"])
