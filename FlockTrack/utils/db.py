from pydantic import TypeAdapter
from sqlalchemy import BigInteger, Integer, JSON, MetaData, create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.types import TypeDecorator

from config.settings import settings

# ───────────────────────────────────────────────
# Naming convention for constraints / indexes
# Keeps PK, FK, index and check names consistent across migrations.
# ───────────────────────────────────────────────
convention = {
    "ix": "ix_%(table_name)s_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_recycle=3600,
    future=True,
)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=convention)


# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


class FeedBreakdown(TypeDecorator):
    """
    JSON column holding a validated list of {feed_type, bags}.

    Values are checked against schemas.sale.FeedItem on the way in and
    returned as plain dicts on the way out, so a malformed breakdown can
    never be stored.
    """
    impl = JSON
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        from schemas.sale import FeedItem

        items = TypeAdapter(list[FeedItem]).validate_python(value)
        return [item.model_dump(mode="json") for item in items]

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return list(value)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
