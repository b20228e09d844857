"""
Canteen API entry point: FastAPI app, router registration, lifespan and error rendering.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    force=True,
)

logger = logging.getLogger(__name__)


# ── Background tasks ──────────────────────────────────────

async def _reset_token_cleanup_task() -> None:
    """Drop expired password reset tokens every 10 minutes."""
    from canteen.services.credentials import CredentialResolver

    resolver = CredentialResolver()
    while True:
        try:
            resolver.purge_expired_reset_tokens()
        except Exception as e:
            logger.error("Reset token cleanup failed: %s", e)
        await asyncio.sleep(600)


# ── Lifespan ──────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise the database on startup and run background cleanup outside tests."""
    from canteen.database import init_db

    init_db()
    logger.info("Database initialised")

    tasks = []
    if os.environ.get("TESTING") != "1":
        tasks.append(asyncio.create_task(_reset_token_cleanup_task()))

    yield

    for t in tasks:
        t.cancel()
        try:
            await t
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Canteen API", description="Canteen ordering backend", lifespan=lifespan)

if os.environ.get("CORS_ENABLED", "0") == "1":
    from fastapi.middleware.cors import CORSMiddleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.environ.get("CORS_ORIGINS", "http://localhost:3000").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# ── Error rendering ───────────────────────────────────────

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ── Routers ───────────────────────────────────────────────

from canteen.routes.auth import router as auth_router
from canteen.routes.users import router as users_router
from canteen.routes.menu import categories_router, items_router, menu_router
from canteen.routes.orders import router as orders_router
from canteen.routes.wallet import router as wallet_router
from canteen.routes.notifications import router as notifications_router
from canteen.routes.reports import router as reports_router

app.include_router(auth_router)
app.include_router(users_router)
app.include_router(categories_router)
app.include_router(items_router)
app.include_router(menu_router)
app.include_router(orders_router)
app.include_router(wallet_router)
app.include_router(notifications_router)
app.include_router(reports_router)


@app.get("/api/health")
async def health_check():
    return {"status": "ok"}
