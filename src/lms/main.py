import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from lms.config import Settings, settings as default_settings
from lms.db import make_engine, make_sessionmaker, init_db
from lms.errors import add_exception_handlers
from lms.api.books import router as books_router
from lms.api.borrow import router as borrow_router
from lms.worker.sweeper import run_sweeper

logger = logging.getLogger(__name__)

LOCALHOST_ORIGIN_RE = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    engine = make_engine(settings.DATABASE_URL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Initializing database")
        await init_db(engine)
        sweeper = None
        if settings.ENABLE_OVERDUE_SWEEPER:
            sweeper = asyncio.create_task(
                run_sweeper(app.state.sessionmaker, settings.OVERDUE_SWEEP_INTERVAL_SECONDS)
            )
        yield
        if sweeper:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
        logger.info("Closing database connection")
        await engine.dispose()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan, version="1.0.0")
    app.state.settings = settings
    app.state.engine = engine
    app.state.sessionmaker = make_sessionmaker(engine)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_origin_regex=LOCALHOST_ORIGIN_RE,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("%s %s", request.method, request.url.path)
        return await call_next(request)

    add_exception_handlers(app)
    app.include_router(books_router, prefix="/api")
    app.include_router(borrow_router, prefix="/api")

    @app.get("/health")
    async def health():
        return {
            "success": True,
            "message": "Library Management System API is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app

app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=default_settings.PORT)
