# src/trips_web/identity.py

import logging
from typing import List

import httpx

from .errors import UpstreamError, VehicleQueryFailed
from .models import Vehicle, VehiclesQueryResponse
from .upstream import decode, request_json

logger = logging.getLogger(__name__)

PAGE_SIZE = 10

# Only the first page is fetched.
VEHICLES_BY_OWNER_QUERY = """
query VehiclesByOwner($owner: Address!, $first: Int!) {
    vehicles(first: $first, filterBy: { owner: $owner }) {
        nodes {
            tokenId
            earnings {
                totalTokens
            }
            definition {
                make
                model
                year
            }
            aftermarketDevice {
                address
                serial
                manufacturer {
                    name
                }
            }
        }
    }
}
"""


class IdentityResolver:
    def __init__(self, client: httpx.AsyncClient, identity_api_url: str):
        self.client = client
        self.identity_api_url = identity_api_url

    async def list_vehicles(self, address: str) -> List[Vehicle]:
        """
        Vehicles owned by ``address`` (already verified by the auth gate).
        Every failure collapses into VehicleQueryFailed; no partial list.
        """
        request_payload = {
            "query": VEHICLES_BY_OWNER_QUERY,
            "variables": {"owner": address, "first": PAGE_SIZE},
        }
        try:
            payload = await request_json(
                self.client, "POST", self.identity_api_url,
                service="identity API", json=request_payload,
            )
            if isinstance(payload, dict) and payload.get("errors") and not payload.get("data"):
                logger.error("identity API: GraphQL errors for %s: %s", address, payload["errors"])
                raise VehicleQueryFailed("Error querying identity API", service="identity API")
            response = decode(VehiclesQueryResponse, payload, service="identity API")
        except VehicleQueryFailed:
            raise
        except UpstreamError as e:
            raise VehicleQueryFailed(f"Error querying identity API: {e.message}", service="identity API") from e

        vehicles = [Vehicle.from_node(node) for node in response.data.vehicles.nodes]
        logger.info("identity API: %d vehicles for owner %s", len(vehicles), address)
        return vehicles
