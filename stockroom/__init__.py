"""Application factory and top-level wiring for Stockroom.

This module brings together configuration, database setup, the API routers
and error handling. Reading it top to bottom shows *what* pieces exist,
*when* they are initialised and *how* they plug into the FastAPI app.
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import settings
from .core.errors import domain_exception_handler, http_exception_handler, validation_exception_handler
from .core.exceptions import StockroomError
from .db.migrate import run_migrations
from .db.session import Base, engine
from .middlewares import RequestIdMiddleware

# Importing the SQLAlchemy models registers them with the metadata. Without
# this step ``Base.metadata.create_all`` would not know about our tables.
from .models import audit as _audit  # noqa: F401
from .models import catalog as _catalog  # noqa: F401
from .models import instance as _instance  # noqa: F401
from .models import inventory as _inventory  # noqa: F401
from .models import tag as _tag  # noqa: F401

# ---------- App init ----------
app = FastAPI(title=settings.APP_NAME)

# ---------- DB init/migrations ----------
# ``create_all`` builds the tables; ``run_migrations`` adds lookup indexes and
# backfills condition tags imported from the old system.
Base.metadata.create_all(bind=engine)
run_migrations(engine)

# ---------- Middleware ----------
app.add_middleware(RequestIdMiddleware)

# ---------- Routers ----------
# Every router carries the API-key dependency itself.
from .routers import api_instances as api_instances_router  # noqa: E402
from .routers import api_inventory as api_inventory_router  # noqa: E402
from .routers import api_tags as api_tags_router  # noqa: E402
from .routers import api_tools as api_tools_router  # noqa: E402

app.include_router(api_tags_router.router)
app.include_router(api_tools_router.router)
app.include_router(api_instances_router.router)
app.include_router(api_inventory_router.router)

# ---------- Exception handling ----------
# Domain errors carry their own code and HTTP status; everything else is
# wrapped in the same envelope.
app.add_exception_handler(StockroomError, domain_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)


__all__ = ["app"]
