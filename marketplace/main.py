# marketplace/main.py
# FastAPI entry point. Tables are created in the startup hook with retries.

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from marketplace.db.session import engine
from marketplace.db.base import Base
from marketplace.core.config import settings
from marketplace.core.errors import MarketplaceError
from marketplace.api import auth, addresses, cart, orders, payments, returns

# Registers every model on Base.metadata
import marketplace.models  # noqa: F401

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


def try_create_tables(retries: int = 5, delay: int = 2) -> bool:
    """
    Creates the tables, retrying while the database is unreachable.

    Args:
        retries: Number of connection attempts
        delay: Seconds to wait between attempts

    Returns:
        True if the tables exist, False once every attempt failed
    """
    for attempt in range(1, retries + 1):
        try:
            logger.info(f"Creating tables ({attempt}/{retries})...")
            Base.metadata.create_all(bind=engine)
            logger.info("Database tables created (or already exist).")
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Attempt {attempt}/{retries} failed to create tables: {e}")
            if attempt < retries:
                logger.info(f"Waiting {delay}s before retry...")
                time.sleep(delay)
            else:
                logger.error(
                    f"Could not create tables after {retries} retries. "
                    "Database initialization failed."
                )
    return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Marketplace API starting up...")
    if not try_create_tables(retries=5, delay=2):
        logger.error("Failed to create database tables. Application may not work correctly.")
        if settings.ENVIRONMENT in ("production", "prod"):
            raise RuntimeError("Cannot start application: database tables creation failed")

    yield

    logger.info("Marketplace API shutting down...")
    engine.dispose()
    logger.info("Database connection closed")


app = FastAPI(
    title="Marketplace API",
    description="Multi-seller e-commerce backend: cart, checkout, orders, payments and returns",
    version="1.0.0",
    lifespan=lifespan
)

# Open CORS only for development
if settings.ENVIRONMENT == "development":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.CLIENT_URL] if settings.CLIENT_URL else [],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(addresses.router, prefix="/api/addresses", tags=["addresses"])
app.include_router(cart.router, prefix="/api/cart", tags=["cart"])
app.include_router(orders.router, prefix="/api/orders", tags=["orders"])
app.include_router(payments.router, prefix="/api/payments", tags=["payments"])
app.include_router(returns.router, prefix="/api/returns", tags=["returns"])


@app.get("/", tags=["health"])
async def root():
    return {
        "status": "ok",
        "service": "Marketplace API",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health", tags=["health"])
async def health():
    return {
        "status": "healthy",
        "version": "1.0.0"
    }


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Database error",
            "detail": str(exc) if settings.ENVIRONMENT == "development" else None,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "detail": str(exc) if settings.ENVIRONMENT == "development" else None,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "marketplace.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower()
    )
