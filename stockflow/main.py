"""
Stockflow FastAPI Main Application
Entry point for the inventory movement REST API
"""
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from stockflow.api import deps
from stockflow.api.errors import register_exception_handlers
from stockflow.api.v1.api_router import api_router
from stockflow.core.config import settings
from stockflow.core.logging import get_logger, setup_logging
from stockflow.services.engine import InventoryEngine, build_engine

setup_logging()
logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application startup and shutdown tasks
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    app.state.engine = build_engine(settings)
    logger.info(f"Inventory engine ready ({settings.STORAGE_BACKEND} storage)")
    yield
    logger.info("Shutting down application")
    if app.state.engine.bind is not None:
        app.state.engine.bind.dispose()


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="""
    ## Stockflow Inventory Movement API

    Goods receipts, goods issues, warehouse transfers and inventory counts
    posting against a single onhand ledger.

    ### Documents:
    - **GR**: receipts post onhand on approval
    - **GI**: issues reserve on confirm, consume on approval
    - **GT**: transfers drive a linked GI and GR
    - **IC**: counts snapshot, review variances and post adjustments
    """,
    docs_url=settings.DOCS_URL,
    openapi_url=settings.OPENAPI_URL,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


# Health check endpoint
@app.get("/health", tags=["System"])
def health_check(engine: InventoryEngine = Depends(deps.get_engine)):
    """
    Health check endpoint for monitoring and load balancers

    Returns system status and storage backend
    """
    try:
        if not engine.storage_ok():
            raise RuntimeError("storage unreachable")
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "storage": settings.STORAGE_BACKEND,
            "debug": settings.DEBUG,
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=503, detail="Service unavailable")


# System information endpoint
@app.get("/info", tags=["System"])
def system_info():
    """
    System information endpoint

    Returns application configuration
    """
    return {
        "application": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "api_version": "v1",
        "docs_url": settings.DOCS_URL,
        "document_types": ["GR", "GI", "GT", "IC"],
        "tracking_types": ["None", "Serial", "Lot"],
    }


# Include API routers
app.include_router(api_router, prefix=settings.API_V1_STR)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "stockflow.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
