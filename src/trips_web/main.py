# src/trips_web/main.py

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth_utils import JwksTokenVerifier, get_current_address
from .cache import EphemeralCache, run_janitor
from .config import Settings, settings
from .dependencies import (
    get_authenticator,
    get_identity_resolver,
    get_trip_aggregator,
    require_privilege_token,
    require_session,
)
from .errors import TripsWebError, ValidationFailed
from .identity import IdentityResolver
from .sessions import (
    SESSION_COOKIE_NAME,
    SessionData,
    SessionStore,
    clear_session_cookie,
    set_session_cookie,
)
from .trips import TripAggregator, TripIndex
from .web3_auth import Web3Authenticator

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


def init_app_state(
    app: FastAPI,
    app_settings: Settings,
    client: httpx.AsyncClient,
    verifier: Optional[JwksTokenVerifier] = None,
) -> None:
    """Builds the caches and services once and hangs them on app.state."""
    if verifier is None:
        verifier = JwksTokenVerifier(
            app_settings.JWKS_URL,
            issuer=app_settings.JWT_ISSUER,
            audience=app_settings.JWT_AUDIENCE,
            address_claim=app_settings.ADDRESS_CLAIM,
            timeout=app_settings.HTTP_TIMEOUT_SECONDS,
            min_refetch_interval=app_settings.JWKS_MIN_REFETCH_SECONDS,
        )
    session_cache = EphemeralCache(app_settings.SESSION_TTL_SECONDS, name="sessions")
    trip_cache = EphemeralCache(app_settings.TRIP_INDEX_TTL_SECONDS, name="trip-index")
    sessions = SessionStore(session_cache, app_settings.SESSION_TTL_SECONDS)

    app.state.settings = app_settings
    app.state.http = client
    app.state.session_cache = session_cache
    app.state.trip_cache = trip_cache
    app.state.sessions = sessions
    app.state.verifier = verifier
    app.state.authenticator = Web3Authenticator(client, app_settings, sessions, verifier)
    app.state.identity = IdentityResolver(client, app_settings.IDENTITY_API_URL)
    app.state.trips = TripAggregator(
        client,
        app_settings.TRIPS_API_BASE_URL,
        app_settings.DEVICE_DATA_API_BASE_URL,
        TripIndex(trip_cache),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("--- trips-web starting up ---")
    logger.info("Identity provider: %s", settings.AUTH_URL)
    logger.info("Identity API: %s", settings.IDENTITY_API_URL)
    logger.info("Trips API: %s", settings.TRIPS_API_BASE_URL)
    logger.info("Device data API: %s", settings.DEVICE_DATA_API_BASE_URL)
    logger.info("JWKS: %s", settings.JWKS_URL)
    if not settings.CLIENT_ID:
        logger.warning("CLIENT_ID is not set. Challenge requests will be rejected by the identity provider.")

    client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
    init_app_state(app, settings, client)
    janitor = asyncio.create_task(
        run_janitor((app.state.session_cache, app.state.trip_cache), settings.CACHE_CLEANUP_INTERVAL_SECONDS)
    )
    yield

    janitor.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await janitor
    app.state.session_cache.flush()
    app.state.trip_cache.flush()
    await client.aclose()
    logger.info("--- trips-web shut down ---")


app = FastAPI(
    title="Trips Web API",
    description="Wallet-based login, vehicle listing and trip maps for vehicle owners.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "HEAD", "PUT", "DELETE", "PATCH"],
    allow_headers=["Accept", "Content-Type", "Content-Length", "Authorization"],
)


# --- Error handling ---

def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": True, "message": message})


@app.exception_handler(TripsWebError)
async def trips_web_error_handler(request: Request, exc: TripsWebError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Error occurred: code=%d path=%s: %s", exc.status_code, request.url.path, exc, exc_info=exc.__cause__)
    else:
        logger.info("Request rejected: code=%d path=%s: %s", exc.status_code, request.url.path, exc)
    return _error_response(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        field = ".".join(str(loc) for loc in errors[0]["loc"] if loc != "body")
        message = f"Invalid request: {field} {errors[0]['msg']}".strip()
    return _error_response(400, message)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    return _error_response(500, "Internal Server Error")


# --- Helpers ---

async def _read_fields(request: Request) -> Dict[str, Any]:
    """Accepts the login forms both url-encoded and as a JSON object."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError as e:
            raise ValidationFailed("Request body is not valid JSON") from e
        if not isinstance(body, dict):
            raise ValidationFailed("Request body must be a JSON object")
        return body
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


def _session_response(request: Request, session: SessionData, message: str) -> JSONResponse:
    app_settings: Settings = request.app.state.settings
    response = JSONResponse({"message": message})
    set_session_cookie(
        response,
        session.session_id,
        max_age=app_settings.SESSION_TTL_SECONDS,
        domain=app_settings.COOKIE_DOMAIN,
        secure=app_settings.COOKIE_SECURE,
    )
    return response


# --- Routes ---

@app.get("/")
async def home() -> Dict[str, str]:
    return {"message": "Trips web service is running!"}


@app.post("/auth/web3/generate_challenge")
async def generate_challenge(
    request: Request,
    authenticator: Web3Authenticator = Depends(get_authenticator),
) -> Dict[str, str]:
    fields = await _read_fields(request)
    challenge = await authenticator.issue_challenge(fields.get("address"))
    return challenge.model_dump()


@app.post("/auth/web3/submit_challenge")
async def submit_challenge(
    request: Request,
    authenticator: Web3Authenticator = Depends(get_authenticator),
) -> JSONResponse:
    fields = await _read_fields(request)
    session = await authenticator.submit_signature(fields.get("state"), fields.get("signature"))
    return _session_response(request, session, "Challenge accepted and session started!")


@app.post("/login-jwt")
async def login_jwt(
    request: Request,
    authenticator: Web3Authenticator = Depends(get_authenticator),
) -> JSONResponse:
    fields = await _read_fields(request)
    session = await authenticator.establish_session(fields.get("jwt"))
    return _session_response(request, session, "Session established")


@app.api_route("/api/logout", methods=["GET", "POST"])
async def logout(
    request: Request,
    authenticator: Web3Authenticator = Depends(get_authenticator),
) -> JSONResponse:
    authenticator.logout(request.cookies.get(SESSION_COOKIE_NAME))
    response = JSONResponse({"message": "Logged out"})
    clear_session_cookie(response, domain=request.app.state.settings.COOKIE_DOMAIN)
    return response


@app.get("/api/vehicles/me")
@app.get("/vehicles/me")
async def get_my_vehicles(
    address: str = Depends(get_current_address),
    identity: IdentityResolver = Depends(get_identity_resolver),
) -> Dict[str, List[Dict[str, Any]]]:
    vehicles = await identity.list_vehicles(address)
    return {"vehicles": [vehicle.model_dump() for vehicle in vehicles]}


@app.post("/api/vehicles/{token_id}/privileges")
async def exchange_privileges(
    token_id: int,
    session: SessionData = Depends(require_session),
    authenticator: Web3Authenticator = Depends(get_authenticator),
) -> Dict[str, Any]:
    await authenticator.exchange_privilege_token(session, token_id)
    return {"message": "Privilege token cached", "vehicle_token_id": token_id}


@app.get("/api/vehicles/{token_id}/trips")
async def get_trips(
    token_id: int,
    privilege_token: str = Depends(require_privilege_token),
    trips: TripAggregator = Depends(get_trip_aggregator),
) -> Dict[str, List[Dict[str, Any]]]:
    trip_list = await trips.list_trips(token_id, privilege_token)
    return {"trips": [trip.model_dump(mode="json") for trip in trip_list]}


@app.get("/api/trips/{trip_id}/map")
async def get_trip_map(
    trip_id: str,
    start: Optional[str] = Query(None, description="Trip window start (ISO-8601)"),
    end: Optional[str] = Query(None, description="Trip window end (ISO-8601)"),
    privilege_token: str = Depends(require_privilege_token),
    trips: TripAggregator = Depends(get_trip_aggregator),
) -> Dict[str, Any]:
    path = await trips.get_trip_path(trip_id, start, end, privilege_token)
    return path.model_dump()
