from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from careconnect.core.config import settings

_url = make_url(settings.DATABASE_URL)
_backend = _url.get_backend_name()
_timeout_ms = int(settings.STORE_TIMEOUT_SECONDS * 1000)

connect_args = {}
engine_kwargs = {}
if _backend.startswith("postgresql"):
    # Bounded reads: the server cancels any statement past the ceiling
    connect_args["options"] = f"-c timezone=utc -c statement_timeout={_timeout_ms}"
    engine_kwargs["pool_timeout"] = settings.STORE_TIMEOUT_SECONDS
elif _backend == "sqlite":
    connect_args["check_same_thread"] = False
    connect_args["timeout"] = settings.STORE_TIMEOUT_SECONDS
    if _url.database in (None, "", ":memory:"):
        engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs["pool_timeout"] = settings.STORE_TIMEOUT_SECONDS

engine = create_engine(
    settings.DATABASE_URL, pool_pre_ping=True, connect_args=connect_args, **engine_kwargs
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
