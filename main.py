import os
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
import structlog

from core.db import Base, engine
from core.celery import celery_app
from core.exceptions import (
    CheckoutValidationError,
    CouponError,
    GrocerError,
    OrderAccessError,
    OrderNotFoundError,
    PersistenceError,
    RatingError,
)
from core.logging import configure_logging
import models  # noqa: F401  registers tables on Base.metadata
from routes.cart import router as cart_router
from routes.coupons import router as coupons_router
from routes.orders import router as orders_router
from routes.products import router as products_router
from routes.ratings import router as ratings_router
from routes.settings import router as settings_router

load_dotenv()
configure_logging()

logger = structlog.get_logger(__name__)

app = FastAPI(
    title=os.getenv("APP_NAME", "Grocery Order Engine"),
    version=os.getenv("APP_VERSION", "1.0.0"),
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Add OpenAPI security schemes for Bearer token authentication on docs/redoc
from fastapi.openapi.utils import get_openapi

def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema["components"]["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
        }
    }
    openapi_schema["security"] = [{"BearerAuth": []}]
    app.openapi_schema = openapi_schema
    return app.openapi_schema

app.openapi = custom_openapi

ERROR_STATUS = {
    CheckoutValidationError: 400,
    CouponError: 400,
    OrderNotFoundError: 404,
    OrderAccessError: 403,
    PersistenceError: 503,
    RatingError: 400,
}


@app.exception_handler(GrocerError)
async def grocer_error_handler(request: Request, exc: GrocerError):
    status_code = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 400)
    if status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# Ensure tables exist (for dev/test; in prod use Alembic)
Base.metadata.create_all(bind=engine)

app.include_router(products_router)
app.include_router(cart_router)
app.include_router(orders_router)
app.include_router(coupons_router)
app.include_router(settings_router)
app.include_router(ratings_router)

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": os.getenv("APP_NAME", "Grocery Order Engine"),
    }


@app.get("/celery-health")
async def celery_health_check():
    """Check Celery worker status"""
    try:
        inspect = celery_app.control.inspect()
        stats = inspect.stats()
        if stats:
            return {"status": "healthy", "workers": len(stats)}
        else:
            return {"status": "no_workers", "message": "No Celery workers running"}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


if __name__ == "__main__":
    import uvicorn
    
    port = int(os.getenv("PORT", 8000))
    debug = os.getenv("DEBUG", "False").lower() == "true"
    
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=debug,
    )
