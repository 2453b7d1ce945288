"""
Luxor mining pool API client and the allow-listed proxy in front of it.
"""

import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from core.config import settings
from core.exceptions import InvalidRequestError, PermissionDeniedError
from database.models import User


logger = logging.getLogger(__name__)


# Public endpoint name -> (pool API path, currency path segment required)
ENDPOINTS = {
    "active-workers": ("/pool/active-workers", True),
    "hashrate-history": ("/pool/hashrate-efficiency", True),
    "workspace": ("/workspace", False),
}


class LuxorError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class LuxorClient:
    """Async client for the Luxor REST API."""

    def __init__(self, api_key: str = None, base_url: str = None, timeout: float = 30.0):
        self.api_key = api_key if api_key is not None else settings.LUXOR_API_KEY
        self.base_url = (base_url or settings.LUXOR_BASE_URL).rstrip("/")
        self.timeout = timeout

    async def request(self, path: str, params: Dict[str, Any] = None) -> Any:
        if not self.api_key:
            raise LuxorError(500, "Mining pool API key is not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(
                    f"{self.base_url}{path}",
                    params=params or {},
                    headers={"Authorization": self.api_key},
                )
        except httpx.TimeoutException:
            logger.warning(f"Luxor {path} timed out")
            raise LuxorError(504, "Mining pool API timed out")
        except httpx.HTTPError as e:
            logger.error(f"Luxor {path} request failed: {e}")
            raise LuxorError(502, "Mining pool API unavailable")

        if resp.status_code >= 400:
            try:
                message = resp.json().get("message")
            except ValueError:
                message = None
            raise LuxorError(resp.status_code, message or f"API returned status {resp.status_code}")
        return resp.json()


def get_luxor_client() -> LuxorClient:
    """FastAPI dependency; tests override it with a fake."""
    return LuxorClient()


def build_query_params(query: Dict[str, str]) -> Dict[str, str]:
    """Drop the endpoint selector and any blank values."""
    return {
        key: value for key, value in query.items()
        if key != "endpoint" and value is not None and str(value).strip()
    }


def resolve_endpoint(endpoint: Optional[str], params: Dict[str, str]) -> str:
    if not endpoint:
        raise InvalidRequestError("Endpoint parameter is required")
    if endpoint not in ENDPOINTS:
        raise InvalidRequestError(
            f'Unsupported endpoint: "{endpoint}". Supported endpoints: {", ".join(ENDPOINTS)}'
        )
    path, needs_currency = ENDPOINTS[endpoint]
    if needs_currency:
        currency = params.get("currency")
        if not currency:
            raise InvalidRequestError(f'Endpoint "{endpoint}" requires a currency parameter')
        path = f"{path}/{currency}"
    return path


def scope_to_user(user: User, params: Dict[str, str]) -> Dict[str, str]:
    """Clients only ever see their own subaccount."""
    if user.is_admin:
        return params
    if not user.luxor_subaccount_name:
        raise PermissionDeniedError("No mining subaccount is assigned to this account")
    scoped = dict(params)
    scoped["subaccount_names"] = user.luxor_subaccount_name
    return scoped


async def proxy(client: LuxorClient, user: User, query: Dict[str, str]) -> Tuple[str, Dict[str, str], Any]:
    params = build_query_params(query)
    path = resolve_endpoint(query.get("endpoint"), params)
    params = scope_to_user(user, params)
    logger.info(f"Luxor proxy {path} for user #{user.id}")
    data = await client.request(path, params)
    return path, params, data
