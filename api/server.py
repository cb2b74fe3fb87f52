# api/server.py
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from loguru import logger
from prometheus_client import make_asgi_app
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.deps import limiter
from api.routes.deploy import router as deploy_router
from api.routes.webhook import router as webhook_router
from core.security import check_secrets_on_startup


@asynccontextmanager
async def lifespan(app: FastAPI):
    check_secrets_on_startup(strict=os.getenv("STRICT_SECRETS", "false").lower() == "true")
    logger.info("Deploy service ready")
    yield
    logger.info("Deploy service stopped")


app = FastAPI(title="Deployer API", lifespan=lifespan)

app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request, exc):
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded"},
    )


app.add_middleware(SlowAPIMiddleware)

# Mount Prometheus Metrics Endpoint
app.mount("/metrics", make_asgi_app())


@app.get("/")
def root():
    return {"message": "deployer API is running"}


@app.get("/health")
async def health():
    return {"status": "ok"}


app.include_router(deploy_router)
app.include_router(webhook_router)
