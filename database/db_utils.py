import logging
import time
from datetime import timezone
from sqlalchemy import create_engine, event, text
from sqlalchemy.pool import StaticPool
from config import DATABASE_URL, DB_HOST, DB_NAME, DB_USER, DB_PASSWORD, DB_PORT

logger = logging.getLogger(__name__)

# Memoization cache for database engines
_engine_cache = {}


def build_database_url(dbname=DB_NAME):
    """
    Returns the SQLAlchemy URL to connect to, or None when the configuration is incomplete.
    """
    if DATABASE_URL:
        return DATABASE_URL

    if not all([DB_USER, DB_PASSWORD, DB_HOST, DB_PORT, dbname]):
        logger.error("❌ Missing required database connection parameters:")
        logger.error(f"   DB_USER: {'✅' if DB_USER else '❌ MISSING'}")
        logger.error(f"   DB_PASSWORD: {'✅' if DB_PASSWORD else '❌ MISSING'}")
        logger.error(f"   DB_HOST: {'✅' if DB_HOST else '❌ MISSING'}")
        logger.error(f"   DB_PORT: {'✅' if DB_PORT else '❌ MISSING'}")
        logger.error(f"   DB_NAME: {'✅' if dbname else '❌ MISSING'}")
        return None

    return f'postgresql+psycopg2://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{dbname}'


def as_utc(ts):
    """
    Returns a timezone-aware UTC datetime. Naive values are read as UTC, which is how
    SQLite hands back the timestamps we stored.
    """
    if ts is None:
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(url):
    """
    Creates an engine for the given URL.

    Postgres engines get a sized connection pool with keepalives. SQLite engines
    get foreign key enforcement, and in-memory databases share one connection so
    every session sees the same data.
    """
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_size=10,
        max_overflow=20,
        connect_args={
            "connect_timeout": 30,
            "application_name": "yield_stats",
            "keepalives": 1,
            "keepalives_idle": 30,
            "keepalives_interval": 10,
            "keepalives_count": 5
        }
    )


def get_db_connection(dbname=DB_NAME):
    """
    Establishes and retrieves a database engine, caching the engine for reuse.
    """
    url = build_database_url(dbname)
    if url is None:
        return None

    if url in _engine_cache:
        logger.debug(f"Using cached connection for database: {dbname}")
        return _engine_cache[url]

    masked_url = url.replace(f":{DB_PASSWORD}@", ":***@") if DB_PASSWORD else url
    logger.info(f"🔄 Establishing new database connection: {masked_url}")

    try:
        engine = create_db_engine(url)

        max_retries = 3
        retry_delay = 2

        for attempt in range(max_retries):
            try:
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                break
            except Exception as e:
                if attempt < max_retries - 1:
                    logger.warning(f"⚠️ Connection attempt {attempt + 1}/{max_retries} failed: {e}. Retrying in {retry_delay}s...")
                    time.sleep(retry_delay)
                else:
                    logger.error(f"❌ All connection attempts failed.")
                    raise e

        _engine_cache[url] = engine
        logger.info(f"✅ Database connection established successfully.")
        return engine

    except Exception as e:
        logger.error(f"❌ Error connecting to database {masked_url}: {e}")
        return None


def init_db(engine=None):
    """
    Creates the config, yield, stat, median and enriched tables if they do not exist.
    """
    from database.models import Base

    if engine is None:
        engine = get_db_connection()
        if engine is None:
            raise Exception("Failed to connect to database")

    Base.metadata.create_all(engine)
    logger.info(f"✅ Tables ready: {', '.join(sorted(Base.metadata.tables))}")
    return engine


if __name__ == "__main__":
    init_db()
