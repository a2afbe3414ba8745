from sqlalchemy import BigInteger, Integer, Numeric
from sqlalchemy.orm import DeclarativeBase

# BigInteger for PostgreSQL, Integer for SQLite (required for autoincrement)
BigIntPK = BigInteger().with_variant(Integer, "sqlite")

# All money columns: 15 digits, 2 decimal places (paisa)
MoneyColumn = Numeric(15, 2, asdecimal=True)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass
