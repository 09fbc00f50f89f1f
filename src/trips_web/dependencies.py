# src/trips_web/dependencies.py
#
# FastAPI dependencies handing out the collaborators built once in the app
# lifespan (see main.init_app_state). Handlers never touch module globals.

from fastapi import Depends, Request

from .errors import Unauthenticated
from .identity import IdentityResolver
from .sessions import SESSION_COOKIE_NAME, SessionData, SessionStore
from .trips import TripAggregator
from .web3_auth import Web3Authenticator


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.sessions


def get_token_verifier(request: Request):
    return request.app.state.verifier


def get_authenticator(request: Request) -> Web3Authenticator:
    return request.app.state.authenticator


def get_identity_resolver(request: Request) -> IdentityResolver:
    return request.app.state.identity


def get_trip_aggregator(request: Request) -> TripAggregator:
    return request.app.state.trips


def require_session(request: Request, sessions: SessionStore = Depends(get_session_store)) -> SessionData:
    session = sessions.get(request.cookies.get(SESSION_COOKIE_NAME))
    if session is None:
        raise Unauthenticated("Not logged in")
    return session


def require_privilege_token(
    session: SessionData = Depends(require_session),
    sessions: SessionStore = Depends(get_session_store),
) -> str:
    token = sessions.get_privilege_token(session.session_id)
    if token is None:
        raise Unauthenticated("privilege token not cached")
    return token
