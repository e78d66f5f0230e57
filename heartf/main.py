import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from heartf.core.config import settings
from heartf.database import Base, check_database_connection, engine
from heartf.models import audit, auth, chat, client_state, lead_finder, org  # noqa: F401  (table registration)
from heartf.routes.audit import router as audit_router
from heartf.routes.auth import router as auth_router
from heartf.routes.chat import router as chat_router
from heartf.routes.data import router as data_router
from heartf.routes.invites import router as invites_router
from heartf.routes.lead_finder import router as lead_finder_router
from heartf.routes.users import router as users_router
from heartf.services.auth import AuthError
from heartf.services.chat import ChatError
from heartf.services.data_store import DataStoreError
from heartf.services.email import EmailNotConfiguredError
from heartf.services.identity import IdentityError
from heartf.services.invites import InviteError
from heartf.services.lead_finder import LeadFinderError
from heartf.services.users import UserAdminError

logger = logging.getLogger(__name__)

DOMAIN_ERRORS = (
    AuthError,
    IdentityError,
    InviteError,
    UserAdminError,
    ChatError,
    LeadFinderError,
    DataStoreError,
    EmailNotConfiguredError,
)

app = FastAPI(title=settings.APP_NAME)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth_router)
app.include_router(invites_router)
app.include_router(users_router)
app.include_router(audit_router)
app.include_router(chat_router)
app.include_router(lead_finder_router)
app.include_router(data_router)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(status_code=exc.status_code, content={"error": detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("invalid request body on %s: %s", request.url.path, exc.errors())
    return _error(400, "Invalid request body")


async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    status_code = int(getattr(exc, "status_code", 400))
    message = getattr(exc, "message", None) or str(exc) or "Request failed"
    if status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, message)
    return _error(status_code, message)


for _error_class in DOMAIN_ERRORS:
    app.add_exception_handler(_error_class, domain_error_handler)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s", request.url.path)
    return _error(500, "Server error")


@app.on_event("startup")
def startup() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    Base.metadata.create_all(bind=engine)


@app.get("/health")
def health() -> dict[str, str]:
    database = "connected"
    status_value = "healthy"
    try:
        check_database_connection()
    except Exception:
        logger.warning("health: database unreachable")
        database = "disconnected"
        status_value = "degraded"

    return {
        "status": status_value,
        "database": database,
        "environment": settings.ENV,
    }
