# src/trips_web/web3_auth.py
#
# Challenge/response login against the identity provider:
#
#   Init -> ChallengeIssued -> SignatureSubmitted -> SessionEstablished | Failed
#
# issue_challenge creates no local state and is safe to retry. submit_signature
# is the only step that mutates state (one session minted per accepted
# signature). The provider's 'state' value is assumed single-use upstream; it
# is not deduplicated here.

import logging
from typing import Optional

import httpx
from starlette.concurrency import run_in_threadpool

from .config import Settings
from .errors import ValidationFailed
from .models import Challenge, PrivilegeTokenResponse, TokenResponse
from .sessions import SessionData, SessionStore, short_id
from .upstream import bearer, decode, request_json

logger = logging.getLogger(__name__)

FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


def _require(value: Optional[str], field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailed(f"{field} is required")
    return value.strip()


class Web3Authenticator:
    def __init__(self, client: httpx.AsyncClient, settings: Settings, sessions: SessionStore, verifier):
        self.client = client
        self.settings = settings
        self.sessions = sessions
        self.verifier = verifier

    async def issue_challenge(self, address: Optional[str]) -> Challenge:
        """Relays the provider's {state, challenge} pair for ``address``."""
        address = _require(address, "address")
        form = {
            "client_id": self.settings.CLIENT_ID,
            "domain": self.settings.DOMAIN,
            "scope": self.settings.SCOPE,
            "response_type": self.settings.RESPONSE_TYPE,
            "address": address,
        }
        payload = await request_json(
            self.client, "POST", self.settings.AUTH_URL,
            service="identity provider", data=form, headers=FORM_HEADERS,
        )
        challenge = decode(Challenge, payload, service="identity provider")
        logger.info("Challenge issued for address %s", address)
        return challenge

    async def submit_signature(self, state: Optional[str], signature: Optional[str]) -> SessionData:
        """
        Exchanges a signed challenge for an access token and starts a session.
        Any provider failure leaves no session behind.
        """
        state = _require(state, "state")
        signature = _require(signature, "signature")
        form = {
            "client_id": self.settings.CLIENT_ID,
            "domain": self.settings.DOMAIN,
            "grant_type": self.settings.GRANT_TYPE,
            "state": state,
            "signature": signature,
        }
        payload = await request_json(
            self.client, "POST", self.settings.SUBMIT_CHALLENGE_URL,
            service="identity provider", data=form, headers=FORM_HEADERS,
        )
        token = decode(TokenResponse, payload, service="identity provider")
        return self.sessions.create(token.access_token)

    async def establish_session(self, token: Optional[str]) -> SessionData:
        """Starts a session from a token issued by an external login widget."""
        token = _require(token, "jwt")
        # verify() may fetch the key set with a blocking call
        token_data = await run_in_threadpool(self.verifier.verify, token)
        session = self.sessions.create(token)
        logger.info("Session %s established from external token for %s", short_id(session.session_id), token_data.address)
        return session

    async def exchange_privilege_token(self, session: SessionData, vehicle_token_id: int) -> str:
        """Trades the session's access token for a vehicle privilege token and caches it."""
        body = {
            "nftContractAddress": self.settings.VEHICLE_NFT_CONTRACT_ADDRESS,
            "privileges": self.settings.PRIVILEGES,
            "tokenId": vehicle_token_id,
        }
        payload = await request_json(
            self.client, "POST", self.settings.TOKEN_EXCHANGE_URL,
            service="token exchange", json=body, headers=bearer(session.access_token),
        )
        privilege = decode(PrivilegeTokenResponse, payload, service="token exchange")
        self.sessions.set_privilege_token(session.session_id, privilege.token)
        logger.info("Privilege token cached for session %s, vehicle %d", short_id(session.session_id), vehicle_token_id)
        return privilege.token

    def logout(self, session_id: Optional[str]) -> bool:
        return self.sessions.destroy(session_id)
