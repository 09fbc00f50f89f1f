# src/trips_web/auth_utils.py

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

import requests
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt  # python-jose
from jose.exceptions import JOSEError  # base of JWTError and JWKError
from pydantic import BaseModel

from .dependencies import get_session_store, get_token_verifier
from .errors import Unauthenticated
from .sessions import SESSION_COOKIE_NAME, SessionStore

logger = logging.getLogger(__name__)

# Extracts the token from the Authorization header. The tokenUrl only feeds
# the OpenAPI docs; sessions are established through /login-jwt.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login-jwt", auto_error=False)

# Context key under which the verified caller address is published
ETHEREUM_ADDRESS_KEY = "ethereum_address"

ALGORITHMS: List[str] = ["RS256"]


class TokenData(BaseModel):
    sub: Optional[str] = None
    email: Optional[str] = None
    address: str


class JwksTokenVerifier:
    """
    Validates bearer JWTs against a remotely fetched, cached JSON Web Key Set.
    An unknown 'kid' triggers one refetch so rotated keys are picked up;
    forced refetches are spaced at least min_refetch_interval seconds apart.
    """

    def __init__(
        self,
        jwks_url: str,
        *,
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
        address_claim: str = ETHEREUM_ADDRESS_KEY,
        timeout: float = 10.0,
        min_refetch_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.jwks_url = jwks_url
        self.issuer = issuer
        self.audience = audience
        self.address_claim = address_claim
        self.timeout = timeout
        self.min_refetch_interval = min_refetch_interval
        self._clock = clock
        self._jwks: Optional[Dict] = None
        self._last_refetch: Optional[float] = None
        self._lock = threading.Lock()

    def fetch_jwks(self) -> Dict:
        """Fetches the key set from the identity provider and replaces the cached copy."""
        try:
            response = requests.get(self.jwks_url, timeout=self.timeout)
            response.raise_for_status()
            jwks = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error("Error fetching JWKS from %s: %s", self.jwks_url, e)
            raise Unauthenticated("Could not retrieve signing keys from identity provider.") from e
        if not isinstance(jwks, dict) or not isinstance(jwks.get("keys"), list):
            logger.error("JWKS from %s has no 'keys' list", self.jwks_url)
            raise Unauthenticated("Could not retrieve signing keys from identity provider.")
        with self._lock:
            self._jwks = jwks
        return jwks

    def get_jwks(self) -> Dict:
        with self._lock:
            jwks = self._jwks
        return jwks if jwks is not None else self.fetch_jwks()

    @staticmethod
    def _find_key(jwks: Dict, kid: str) -> Optional[Dict]:
        for key in jwks.get("keys", []):
            if isinstance(key, dict) and key.get("kid") == kid:
                return key
        return None

    def _claim_refetch(self) -> bool:
        now = self._clock()
        with self._lock:
            if self._last_refetch is not None and now - self._last_refetch < self.min_refetch_interval:
                return False
            self._last_refetch = now
        return True

    def get_signing_key(self, token: str) -> Dict:
        """
        Given a token, find the appropriate public key from the JWKS
        to verify the token's signature.
        """
        try:
            unverified_header = jwt.get_unverified_header(token)
        except JWTError as e:
            raise Unauthenticated(f"Invalid token header: {e}") from e

        kid = unverified_header.get("kid")
        if not kid:
            raise Unauthenticated("Token header missing 'kid'")

        key = self._find_key(self.get_jwks(), kid)
        if key is None and self._claim_refetch():
            logger.info("Signing key %s not in cached JWKS, refetching", kid)
            key = self._find_key(self.fetch_jwks(), kid)
        if key is None:
            raise Unauthenticated(f"Unable to find appropriate signing key for kid: {kid}")
        return key

    def verify(self, token: str) -> TokenData:
        signing_key = self.get_signing_key(token)
        try:
            payload = jwt.decode(
                token,
                signing_key,
                algorithms=ALGORITHMS,
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_aud": self.audience is not None},
            )
        except JOSEError as e:
            logger.info("JWT Validation Error: %s", e)
            raise Unauthenticated("Could not validate credentials") from e

        address = payload.get(self.address_claim)
        if not isinstance(address, str) or not address:
            raise Unauthenticated(f"Token has no '{self.address_claim}' claim")
        return TokenData(sub=payload.get("sub"), email=payload.get("email"), address=address)


def get_current_address(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    sessions: SessionStore = Depends(get_session_store),
    verifier: JwksTokenVerifier = Depends(get_token_verifier),
) -> str:
    """
    Gate for owner-data routes. The bearer header wins; otherwise the access
    token of the cookie's session is used. Any failure is a 401 and the
    route handler never runs.
    """
    if token is None:
        session = sessions.get(request.cookies.get(SESSION_COOKIE_NAME))
        if session is None:
            raise Unauthenticated("Not authenticated")
        token = session.access_token

    token_data = verifier.verify(token)
    setattr(request.state, ETHEREUM_ADDRESS_KEY, token_data.address)
    return token_data.address
