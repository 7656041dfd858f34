from sqlalchemy.orm import declarative_base

from shared.database import get_engine, get_session
from .config import DATABASE_URL, DB_ECHO

engine = get_engine(DATABASE_URL, echo=DB_ECHO)
SessionLocal = get_session(engine)

Base = declarative_base()


async def get_db():
    async with SessionLocal() as session:
        yield session
