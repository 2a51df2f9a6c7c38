# ruo/services/geocoding.py
import logging
from typing import Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from ruo import config
from ruo.schemas import NormalizedLocation

logger = logging.getLogger(__name__)


class NominatimGeocoder:
    """
    Reverse geocoding via OpenStreetMap Nominatim.

    - Locale fixe (accept-language), User-Agent requis par la politique Nominatim.
    - Ne lève jamais: tout échec (réseau, 429, JSON invalide) => None.
      L'appelant continue sans enrichissement d'adresse.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        url: str = config.GEOCODER_URL,
        language: str = config.GEOCODER_LANGUAGE,
        user_agent: str = config.GEOCODER_USER_AGENT,
        timeout: float = config.GEOCODER_TIMEOUT_SEC,
    ):
        self.client = client
        self.url = url
        self.language = language
        self.user_agent = user_agent
        self.timeout = timeout

    async def normalize(self, lat: float, lng: float) -> Optional[NormalizedLocation]:
        params = {
            "format": "jsonv2",
            "lat": f"{lat:.6f}",
            "lon": f"{lng:.6f}",
            "addressdetails": 1,
            "accept-language": self.language,
        }
        try:
            r = await self.client.get(
                self.url, params=params,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
            )
            r.raise_for_status()
            j = r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("[geocode] reverse failed for %.6f,%.6f: %s", lat, lng, e)
            return None

        if not isinstance(j, dict) or "error" in j:
            logger.info("[geocode] no result for %.6f,%.6f", lat, lng)
            return None

        addr = j.get("address") or {}
        if not isinstance(addr, dict):
            addr = {}
        postcode = addr.get("postcode")
        try:
            return NormalizedLocation(
                address=j.get("display_name") or None,
                postal_code=str(postcode).strip() if postcode else None,
                locality=addr.get("city") or addr.get("town") or addr.get("village") or None,
            )
        except PydanticValidationError as e:
            logger.warning("[geocode] malformed result for %.6f,%.6f: %s", lat, lng, e)
            return None
