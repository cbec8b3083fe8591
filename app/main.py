from fastapi import FastAPI

from app.stockline.api import api_router
from app.stockline.core.config import settings
from app.stockline.core.errors import setup_exception_handlers
from app.stockline.core.logging import configure_logging
from app.stockline.middleware.observability import ObservabilityMiddleware
from app.stockline.middleware.trace import TraceIdMiddleware


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=settings.APP_NAME)
    app.add_middleware(TraceIdMiddleware)
    app.add_middleware(ObservabilityMiddleware)
    setup_exception_handlers(app)
    app.include_router(api_router)
    return app


app = create_app()
