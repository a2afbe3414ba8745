from src.core.database.session import async_session, engine, get_db, get_session_factory
from src.core.database.base import Base, BigIntPK, MoneyColumn

__all__ = ["async_session", "engine", "get_db", "get_session_factory", "Base", "BigIntPK", "MoneyColumn"]
