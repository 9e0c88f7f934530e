from accountability.db.session import async_session_maker, dispose_db, get_db, init_db
from accountability.db.base import Base

__all__ = ["Base", "async_session_maker", "dispose_db", "get_db", "init_db"]
