from authsvc.db.base import Base
from authsvc.db.session import async_session_maker, engine, get_db, init_db

__all__ = ["Base", "async_session_maker", "engine", "get_db", "init_db"]
