from __future__ import annotations
import logging
import time
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase

from .config import settings
from .database import close_db, ensure_indexes, get_db, utcnow
from .errors import MarketMatchError, status_code_for
from .routers import admin, auth, cart, orders, payments, products, wishlist

logger = logging.getLogger("marketmatch")


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await ensure_indexes(await get_db())
    logger.info("MarketMatch API started")
    yield
    close_db()


app = FastAPI(title="MarketMatch API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "%s %s -> %d (%.1f ms)",
        request.method, request.url.path, response.status_code, (time.perf_counter() - started) * 1000,
    )
    return response


# --- Exception handlers ---


@app.exception_handler(MarketMatchError)
async def marketmatch_error_handler(request: Request, exc: MarketMatchError) -> JSONResponse:
    """Map MarketMatchError subclasses to the failure envelope."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": exc.message, "error_type": type(exc).__name__},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = [
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}" for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "; ".join(problems) or "Invalid request"},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


# --- Endpoints ---


@app.get("/")
async def root():
    return {"message": "MarketMatch backend running"}


@app.get("/api/health")
async def health(db: AsyncIOMotorDatabase = Depends(get_db)):
    try:
        await db.command("ping")
        database = "Connected"
    except Exception as e:
        logger.warning("Health check could not reach MongoDB: %s", e)
        database = "Disconnected"
    return {"status": "OK", "database": database, "timestamp": utcnow()}


app.include_router(auth.router)
app.include_router(products.router)
app.include_router(cart.router)
app.include_router(orders.router)
app.include_router(payments.router)
app.include_router(wishlist.router)
app.include_router(admin.router)
