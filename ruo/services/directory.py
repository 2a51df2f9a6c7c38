# ruo/services/directory.py
import logging
from typing import Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from ruo import config
from ruo.errors import ExternalServiceError
from ruo.schemas import DirectoryEntry

logger = logging.getLogger(__name__)


class DirectoryClient:
    """
    Client de l'annuaire weg.li (/districts/{zip}).

    - 404 => None (pas de couverture pour ce code postal, résultat normal)
    - tout autre échec => ExternalServiceError
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str = config.WEGLI_API_URL,
        api_key: str = config.WEGLI_API_KEY,
        timeout: float = config.DIRECTORY_TIMEOUT_SEC,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    async def lookup(self, postal_code: str) -> Optional[DirectoryEntry]:
        if not self.api_key:
            raise ExternalServiceError("authority directory not configured")

        url = f"{self.base_url}/districts/{postal_code}"
        headers = {"X-API-KEY": self.api_key, "Accept": "application/json"}
        try:
            r = await self.client.get(url, headers=headers, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise ExternalServiceError("authority directory timeout", detail=str(e)) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError("authority directory unreachable", detail=str(e)) from e

        if r.status_code == 404:
            return None
        if r.status_code != 200:
            raise ExternalServiceError(f"authority directory error [{r.status_code}]")

        try:
            return DirectoryEntry.model_validate(r.json())
        except (ValueError, PydanticValidationError) as e:
            raise ExternalServiceError("authority directory returned a malformed record", detail=str(e)) from e
