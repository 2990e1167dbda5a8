from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from intrachat.config import DATA_DIR, DATABASE_URL, SQL_ECHO
from intrachat.schemas import *  # noqa: F401,F403  registers the tables


def build_engine(url: str = DATABASE_URL, echo: bool = SQL_ECHO):
    kwargs = {'echo': echo}
    if url.startswith('sqlite'):
        kwargs['connect_args'] = {'check_same_thread': False}
        if url in ('sqlite://', 'sqlite:///:memory:'):
            kwargs['poolclass'] = StaticPool
        else:
            DATA_DIR.mkdir(parents=True, exist_ok=True)
    return create_engine(url, **kwargs)


engine = build_engine()


def init_db(bind=None):
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    with Session(engine) as session:
        yield session
