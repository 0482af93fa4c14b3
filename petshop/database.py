from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


class Database:
    """
    Owns the engine and session factory for one application instance.
    Constructed at startup, disposed at shutdown.
    """

    def __init__(self, url: str, echo: bool = False):
        engine_kwargs = {"echo": echo}

        if url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            # in-memory databases live only as long as their single connection
            if url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_pre_ping"] = True
            engine_kwargs["pool_recycle"] = 3600

        self.url = url
        self.engine = create_engine(url, **engine_kwargs)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine
        )

    def session(self):
        return self.SessionLocal()

    def create_all(self) -> None:
        # Create database tables if they don't exist
        from . import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()
