# src/trips_web/upstream.py

import logging
from typing import Any, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .errors import MalformedUpstreamResponse, UpstreamStatusError, UpstreamUnavailable

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def request_json(client: httpx.AsyncClient, method: str, url: str, *, service: str, **kwargs: Any) -> Any:
    """
    Sends one request and returns the decoded JSON body.
    Transport failures, non-2xx answers and undecodable bodies each map to
    their own error type; nothing is retried.
    """
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.RequestError as e:
        logger.error("%s: request error calling %s: %s", service, url, e)
        raise UpstreamUnavailable(f"Could not connect to {service}", service=service) from e

    if response.status_code >= 300:
        logger.error("%s: non-success status %d from %s: %s", service, response.status_code, url, response.text[:500])
        raise UpstreamStatusError(
            f"{service} answered with status {response.status_code}",
            service=service,
            status_code=response.status_code,
        )

    try:
        return response.json()
    except ValueError as e:
        logger.error("%s: undecodable response from %s: %s", service, url, e)
        raise MalformedUpstreamResponse(f"Undecodable response from {service}", service=service) from e


def decode(model: Type[ModelT], payload: Any, *, service: str) -> ModelT:
    """Validates ``payload`` against ``model``; any mismatch fails the whole response."""
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        logger.error("%s: response failed schema validation: %s", service, e)
        raise MalformedUpstreamResponse(f"Malformed response from {service}", service=service) from e
