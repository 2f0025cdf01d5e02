from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Depends, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import AuthenticatedIdentity, Authenticator, Unauthenticated
from .config import Settings, configure_logging, load_settings
from .constants import (
    FOUND_LIST_DEGRADED_WARNING,
    LIST_DEGRADED_WARNING,
    OPTIONAL_FOUND_CARD_FIELDS,
    OPTIONAL_REPORT_FIELDS,
    REQUIRED_FOUND_CARD_FIELDS,
    REQUIRED_REPORT_FIELDS,
    STATS_DEGRADED_WARNING,
)
from .db import init_db
from .models import found_card_to_dict, report_card_to_dict
from .repository import ErrorKind, FoundCardRepository, ReportRepository, RepositoryError
from .storage import WebDavStorage
from .storage_workers import StorageWorkerPool
from .tokens import TokenDecoder
from .uploads import UploadFailed, UploadGateway, UploadRejected
from .validation import build_found_card_fields, build_report_fields, invalid_fields, missing_fields

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Raised by route handlers; rendered as the JSON error envelope."""

    def __init__(self, status_code: int, error: str, details: Optional[Any] = None):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details


def error_response(status_code: int, error: str, details: Optional[Any] = None) -> JSONResponse:
    content: Dict[str, Any] = {"success": False, "error": error}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def configure_app_state(app_instance: FastAPI, settings: Settings, engine=None, storage=None) -> None:
    """Wire settings, database, authenticator and upload gateway onto app.state.

    `engine` and `storage` may be supplied by the caller; otherwise they are
    built from settings and owned (disposed/shut down) by the app.
    """
    app_instance.state.settings = settings
    app_instance.state.owns_engine = engine is None
    if engine is None:
        engine = init_db(settings.database_url)
    app_instance.state.engine = engine
    app_instance.state.repository = ReportRepository(engine)
    app_instance.state.found_cards = FoundCardRepository(engine)

    decoder = TokenDecoder.from_settings(settings)
    if not decoder.verifies_signature:
        logger.warning("JWT_SECRET not set: bearer tokens are decoded WITHOUT signature verification")
    else:
        logger.info("Bearer token verification enabled (algorithms=%s)", settings.jwt_algorithms)
    app_instance.state.authenticator = Authenticator(decoder)

    app_instance.state.owns_storage = storage is None
    if storage is None and settings.storage_base_url():
        base_storage = WebDavStorage(settings.storage_base_url(), auth=(settings.webdav_username, settings.webdav_password))
        storage = StorageWorkerPool(base_storage, max_workers=settings.storage_workers, max_concurrent=settings.storage_concurrency)
    app_instance.state.storage = storage

    gateway = None
    if storage is not None:
        public_base = settings.public_storage_url or settings.storage_base_url() or getattr(storage, 'base_url', None)
        if public_base:
            gateway = UploadGateway(storage, public_base, max_size=settings.max_upload_bytes)
        else:
            logger.warning("No public storage URL could be derived; uploads are disabled")
    else:
        logger.warning("WebDAV storage not configured; uploads are disabled")
    app_instance.state.upload_gateway = gateway
    app_instance.state.configured = True


def shutdown_app_state(app_instance: FastAPI) -> None:
    storage = getattr(app_instance.state, 'storage', None)
    if storage is not None and getattr(app_instance.state, 'owns_storage', False):
        logger.info("Stopping storage worker pool")
        storage.shutdown()
    engine = getattr(app_instance.state, 'engine', None)
    if engine is not None and getattr(app_instance.state, 'owns_engine', False):
        logger.info("Disposing database engine")
        engine.dispose()
    app_instance.state.configured = False


@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    """Manage application lifecycle (startup and shutdown events)."""
    if not getattr(app_instance.state, 'configured', False):
        settings = load_settings()
        configure_logging(settings)
        logger.info("Starting identity_finder FastAPI app")
        configure_app_state(app_instance, settings)

    yield

    logger.info("Shutting down identity_finder FastAPI app")
    try:
        shutdown_app_state(app_instance)
    finally:
        logger.info("Shutdown event completed")


def require_identity(request: Request) -> AuthenticatedIdentity:
    result = request.app.state.authenticator.authenticate_request(request)
    if isinstance(result, Unauthenticated):
        raise ApiError(401, "Authentication required. Please sign in again.")
    return result


async def json_object_body(
    request: Request,
    identity: AuthenticatedIdentity = Depends(require_identity),
) -> Dict[str, Any]:
    """Request body as a JSON object, read only after the caller is authenticated."""
    try:
        payload = await request.json()
    except ValueError:
        raise ApiError(400, "Invalid request body", {"reason": "Body is not valid JSON"})
    if not isinstance(payload, dict):
        raise ApiError(400, "Invalid request body", {"reason": "Body must be a JSON object"})
    return payload


def check_submission(payload: Dict[str, Any], required, optional) -> None:
    missing = missing_fields(payload, required)
    if missing:
        raise ApiError(400, f"Missing required fields: {', '.join(missing)}", {"missingFields": missing})
    invalid = invalid_fields(payload, tuple(required) + tuple(optional))
    if invalid:
        raise ApiError(400, f"Fields must be strings: {', '.join(invalid)}", {"invalidFields": invalid})


def create_failed(e: RepositoryError, what: str) -> ApiError:
    if e.kind == ErrorKind.VALIDATION_FAILED:
        return ApiError(400, f"{what} rejected by validation", {"kind": e.kind.value, "message": str(e)})
    return ApiError(500, f"Failed to create {what.lower()} submission", {"kind": e.kind.value})


router = APIRouter()


@router.get("/health", tags=["health"])
def health() -> Dict[str, Any]:
    return {"status": "ok"}


@router.post("/api/report-cards", tags=["report-cards"])
def create_report_card(
    request: Request,
    identity: AuthenticatedIdentity = Depends(require_identity),
    payload: Dict[str, Any] = Depends(json_object_body),
):
    """Submit a lost ID report owned by the caller."""
    logger.debug("create_report_card called by %s with keys %s", identity.id, sorted(payload.keys()))
    try:
        check_submission(payload, REQUIRED_REPORT_FIELDS, OPTIONAL_REPORT_FIELDS)
    except ApiError as e:
        logger.info("Rejected report card from %s: %s", identity.id, e.error)
        raise

    repository: ReportRepository = request.app.state.repository
    try:
        card = repository.create(identity.id, build_report_fields(payload))
    except RepositoryError as e:
        raise create_failed(e, "Report card")

    return {"success": True, "data": report_card_to_dict(card)}


@router.get("/api/report-cards", tags=["report-cards"])
def list_report_cards(request: Request, identity: AuthenticatedIdentity = Depends(require_identity)):
    """List the caller's report cards, newest first.

    A repository failure degrades to an empty list with a warning.
    """
    repository: ReportRepository = request.app.state.repository
    try:
        cards = repository.list_by_owner(identity.id)
    except RepositoryError as e:
        logger.error("Serving empty report card list for %s after %s error", identity.id, e.kind.value)
        return {"success": True, "data": [], "warning": LIST_DEGRADED_WARNING}

    return {"success": True, "data": [report_card_to_dict(c) for c in cards]}


@router.post("/api/found-cards", tags=["found-cards"])
def create_found_card(
    request: Request,
    identity: AuthenticatedIdentity = Depends(require_identity),
    payload: Dict[str, Any] = Depends(json_object_body),
):
    """Register an ID card the caller found."""
    try:
        check_submission(payload, REQUIRED_FOUND_CARD_FIELDS, OPTIONAL_FOUND_CARD_FIELDS)
    except ApiError as e:
        logger.info("Rejected found card from %s: %s", identity.id, e.error)
        raise

    repository: FoundCardRepository = request.app.state.found_cards
    try:
        card = repository.create(identity.id, build_found_card_fields(payload))
    except RepositoryError as e:
        raise create_failed(e, "Found card")

    return {"success": True, "data": found_card_to_dict(card)}


@router.get("/api/found-cards", tags=["found-cards"])
def list_found_cards(request: Request, identity: AuthenticatedIdentity = Depends(require_identity)):
    repository: FoundCardRepository = request.app.state.found_cards
    try:
        cards = repository.list_by_owner(identity.id)
    except RepositoryError as e:
        logger.error("Serving empty found card list for %s after %s error", identity.id, e.kind.value)
        return {"success": True, "data": [], "warning": FOUND_LIST_DEGRADED_WARNING}

    return {"success": True, "data": [found_card_to_dict(c) for c in cards]}


@router.get("/api/report-cards/stats", tags=["report-cards"])
def report_card_stats(request: Request, identity: AuthenticatedIdentity = Depends(require_identity)):
    """Cards the caller reported lost and cards they found.

    Each count falls back to 0 on its own when its query fails.
    """
    data = {}
    degraded = False
    for key, repository in (("cardsReported", request.app.state.repository),
                            ("cardsFound", request.app.state.found_cards)):
        try:
            data[key] = repository.count_by_owner(identity.id)
        except RepositoryError as e:
            logger.error("Serving zero %s for %s after %s error", key, identity.id, e.kind.value)
            data[key] = 0
            degraded = True

    body: Dict[str, Any] = {"success": True, "data": data}
    if degraded:
        body["warning"] = STATS_DEGRADED_WARNING
    return body


@router.post("/api/upload", tags=["uploads"])
async def upload_attachment(
    request: Request,
    file: Optional[UploadFile] = File(None),
    identity: AuthenticatedIdentity = Depends(require_identity),
):
    """Store a supporting file (JPEG, PNG or PDF up to the size limit)."""
    if file is None:
        raise ApiError(400, "No file provided")

    gateway: Optional[UploadGateway] = request.app.state.upload_gateway
    if gateway is None:
        raise ApiError(500, "Storage is not configured")

    # One byte past the limit is enough to know it is too large
    data = await file.read(gateway.max_size + 1)
    try:
        file_url = await gateway.store(identity.id, file.filename, file.content_type, data)
    except UploadRejected as e:
        logger.info("Rejected upload %r from %s: %s", file.filename, identity.id, e)
        raise ApiError(400, str(e))
    except UploadFailed:
        raise ApiError(500, "Failed to upload file")

    return {"success": True, "data": {"fileUrl": file_url}}


async def _api_error_handler(request: Request, exc: ApiError):
    return error_response(exc.status_code, exc.error, exc.details)


async def _validation_error_handler(request: Request, exc: RequestValidationError):
    details = [{"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg")} for e in exc.errors()]
    return error_response(400, "Invalid request body", details)


async def _http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))


async def _unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Internal server error")


def create_app(cors_origins: Optional[list] = None) -> FastAPI:
    app_instance = FastAPI(
        title="identity_finder",
        description="Lost and found ID card reports",
        version="0.1.0",
        lifespan=lifespan,
    )
    app_instance.state.configured = False

    app_instance.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app_instance.add_exception_handler(ApiError, _api_error_handler)
    app_instance.add_exception_handler(RequestValidationError, _validation_error_handler)
    app_instance.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app_instance.add_exception_handler(Exception, _unhandled_error_handler)

    app_instance.include_router(router)
    return app_instance


app = create_app()
