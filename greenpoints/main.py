import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from greenpoints.config import Settings, load_settings
from greenpoints.errors import InsufficientPoints, RewardsError
from greenpoints.routers import rewards as rewards_router
from greenpoints.seed import seed_catalog
from greenpoints.services.redemption_service import RedemptionService
from greenpoints.storage.base import StorageBackend
from greenpoints.storage.factory import select_backend


def _attach_service(app: FastAPI, storage: StorageBackend, settings: Settings) -> None:
    service = RedemptionService(storage, code_max_attempts=settings.voucher_code_max_attempts)
    if settings.seed_catalog:
        seed_catalog(service.catalog)
    app.state.storage = storage
    app.state.redemption_service = service


def create_app(storage: Optional[StorageBackend] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if not hasattr(app.state, "redemption_service"):
            owned = select_backend(settings)
            _attach_service(app, owned, settings)
        yield
        if owned is not None:
            owned.close()

    app = FastAPI(
        title="GreenPoints Rewards API",
        description="Spend recycling points on vouchers with a compensated points ledger",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS - keep permissive for demo; restrict in prod
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.include_router(rewards_router.router)

    if storage is not None:
        storage.init_schema()
        _attach_service(app, storage, settings)

    @app.get("/health")
    def health(request: Request):
        storage = getattr(request.app.state, "storage", None)
        return {"status": "healthy", "storage": storage.name if storage else None}

    # Every taxonomy member gets its own status and message, never the raw storage error
    @app.exception_handler(RewardsError)
    async def rewards_exception_handler(request: Request, exc: RewardsError):
        body = {"status_code": exc.status_code, "code": exc.code.value, "detail": exc.user_message}
        if isinstance(exc, InsufficientPoints):
            body["required"] = exc.required
            body["available"] = exc.available
        return JSONResponse(status_code=exc.status_code, content={"error": body})

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": {"status_code": exc.status_code, "detail": exc.detail}},
        )

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("greenpoints.main:app", host="0.0.0.0", port=8000, reload=True)
