import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sitedata.admin.router import router as admin_router
from sitedata.auth.router import router as auth_router
from sitedata.config import settings
from sitedata.db.postgres import engine
from sitedata.ingestion.router import router as ingestion_router
from sitedata.sites.router import router as sites_router

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.SERVICE_NAME} {settings.SERVICE_VERSION}")
    yield
    await engine.dispose()
    logger.info(f"{settings.SERVICE_NAME} stopped")


app = FastAPI(
    title="Site Data API",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router, prefix="/api/users", tags=["Users"])
app.include_router(sites_router, prefix="/api/sites", tags=["Sites"])
app.include_router(admin_router, prefix="/api/admin", tags=["Admin"])
app.include_router(ingestion_router, prefix="/internal", tags=["Internal"])


@app.get("/")
async def root():
    return {
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "status": "running",
    }


@app.get("/health")
async def health():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("sitedata.main:app", host=settings.HOST, port=settings.PORT, reload=True)
