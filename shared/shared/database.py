from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker


def get_engine(database_url: str, echo: bool = False):
    return create_async_engine(database_url, echo=echo, pool_pre_ping=True)


def get_session(engine):
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False
    )
