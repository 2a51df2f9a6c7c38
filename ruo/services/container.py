# ruo/services/container.py
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request

from ruo.services.authorities import AuthorityCache
from ruo.services.directory import DirectoryClient
from ruo.services.geocoding import NominatimGeocoder
from ruo.services.mailer import Mailer, SmtpMailer
from ruo.services.storage import EvidenceStore
from ruo.services.submission import SubmissionOrchestrator


@dataclass
class Services:
    """Collaborateurs partagés, construits au démarrage (lifespan) et fermés à l'arrêt."""

    http: httpx.AsyncClient
    geocoder: NominatimGeocoder
    authorities: AuthorityCache
    mailer: Mailer
    store: EvidenceStore
    submission: SubmissionOrchestrator

    @classmethod
    def build(
        cls,
        *,
        http: Optional[httpx.AsyncClient] = None,
        mailer: Optional[Mailer] = None,
        store: Optional[EvidenceStore] = None,
        directory: Optional[DirectoryClient] = None,
        geocoder: Optional[NominatimGeocoder] = None,
    ) -> "Services":
        http = http or httpx.AsyncClient(follow_redirects=True)
        mailer = mailer or SmtpMailer()
        store = store or EvidenceStore()
        authorities = AuthorityCache(directory or DirectoryClient(http))
        return cls(
            http=http,
            geocoder=geocoder or NominatimGeocoder(http),
            authorities=authorities,
            mailer=mailer,
            store=store,
            submission=SubmissionOrchestrator(mailer, store, authorities),
        )

    async def aclose(self) -> None:
        await self.http.aclose()


def get_services(request: Request) -> Services:
    return request.app.state.services
