from fastapi import APIRouter

from app.stockline.core.config import settings
from app.stockline.routers.auth import router as auth_router
from app.stockline.routers.health import router as health_router
from app.stockline.routers.metrics import router as metrics_router
from app.stockline.routers.stock import router as stock_router
from app.stockline.routers.transfers import router as transfers_router
from app.stockline.routers.variances import router as variances_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(auth_router, prefix="/stockline/auth", tags=["auth"])
api_router.include_router(transfers_router, tags=["transfers"])
api_router.include_router(variances_router, tags=["variances"])
api_router.include_router(stock_router, tags=["stock"])
if settings.METRICS_ENABLED:
    api_router.include_router(metrics_router, tags=["ops"])
