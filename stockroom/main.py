from prometheus_fastapi_instrumentator import Instrumentator

from .core.config import settings
from .core.logging import configure_logging
from . import app as base_app

configure_logging()
app = base_app
# Registered at import time; middleware cannot be added once the app has started.
instrumentator = Instrumentator(excluded_handlers=["/health", "/metrics"])
instrumentator.instrument(app).expose(app, include_in_schema=False)


@app.get("/health")
async def health() -> dict[str, object]:
    return {"ok": True, "app": settings.APP_NAME}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("stockroom.main:app", host=settings.HOST, port=settings.PORT)
