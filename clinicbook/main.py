import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import router as auth_router
from .confirmation import router as confirmation_router
from .core.config import get_settings
from .core.db import Base, engine
from .core.request_context import LoginRequired
from .core.responses import ApiError, api_error_handler, error_response
from .dashboard import router as dashboard_router
from .embeddings import router as embeddings_router
from .packages import customer_packages_router, router as packages_router
from .public_booking import router as public_booking_router
from .social_media import router as social_router
from .waitlist import router as waitlist_router


settings = get_settings()
app = FastAPI(title="Clinicbook Backend")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError):
    return await api_error_handler(request, exc)


@app.exception_handler(StarletteHTTPException)
async def handle_http_exception(request: Request, exc: StarletteHTTPException):
    response = error_response(str(exc.detail), exc.status_code)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(LoginRequired)
async def handle_login_required(request: Request, exc: LoginRequired):
    return RedirectResponse(settings.login_path, status_code=303)


app.include_router(auth_router)
app.include_router(confirmation_router)
app.include_router(dashboard_router)
app.include_router(embeddings_router)
app.include_router(waitlist_router)
app.include_router(packages_router)
app.include_router(customer_packages_router)
app.include_router(public_booking_router)
app.include_router(social_router)


@app.on_event("startup")
async def on_startup():
    if not settings.auto_create_tables:
        return
    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured")


@app.get("/health")
async def healthcheck():
    return {"ok": True}
