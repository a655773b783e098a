from fee_ledger.core.database.session import async_session, engine, get_db
from fee_ledger.core.database.base import Base, BaseModel, BigIntPK

__all__ = ["async_session", "engine", "get_db", "Base", "BaseModel", "BigIntPK"]
