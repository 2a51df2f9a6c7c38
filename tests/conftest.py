import asyncio
from typing import Dict, List, Optional

import httpx
import pytest

from ruo import crud
from ruo.db import init_models, make_engine, make_sessionmaker
from ruo.errors import ExternalServiceError
from ruo.schemas import DirectoryEntry
from ruo.services.container import Services
from ruo.services.mailer import Mailer, OutboundMessage
from ruo.services.storage import EvidenceStore

BERLIN = (52.520008, 13.404954)
BERLIN_ZIP = "10115"
ORDNUNGSAMT = DirectoryEntry(
    name="Bezirksamt Mitte",
    zip=BERLIN_ZIP,
    email="ordnungsamt@ba-mitte.berlin.de",
    latitude=52.5321,
    longitude=13.3849,
)


class FakeDirectory:
    """Annuaire en mémoire; compte les appels, peut échouer ou ralentir."""

    def __init__(self, entries: Optional[Dict[str, DirectoryEntry]] = None):
        self.entries = dict(entries or {})
        self.calls: List[str] = []
        self.fail = False
        self.delay = 0.0

    async def lookup(self, postal_code: str) -> Optional[DirectoryEntry]:
        self.calls.append(postal_code)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ExternalServiceError("authority directory unreachable")
        return self.entries.get(postal_code)


class FakeMailer(Mailer):
    def __init__(self):
        self.sent: List[OutboundMessage] = []
        self.fail = False

    async def send(self, message: OutboundMessage) -> None:
        if self.fail:
            raise ExternalServiceError("mail delivery failed", detail="550 mailbox unavailable")
        self.sent.append(message)


def nominatim_handler(postcode: Optional[str] = BERLIN_ZIP, status: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        if status != 200:
            return httpx.Response(status)
        if postcode is None:
            return httpx.Response(200, json={"error": "Unable to geocode"})
        return httpx.Response(200, json={
            "display_name": f"Invalidenstraße 1, {postcode} Berlin, Deutschland",
            "address": {"road": "Invalidenstraße", "postcode": postcode, "city": "Berlin"},
        })
    return handler


@pytest.fixture
async def engine(tmp_path):
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'ruo.db'}")
    await init_models(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def sessionmaker(engine):
    return make_sessionmaker(engine)


@pytest.fixture
async def db(sessionmaker):
    async with sessionmaker() as session:
        yield session


@pytest.fixture
def directory():
    return FakeDirectory({BERLIN_ZIP: ORDNUNGSAMT})


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def store(tmp_path):
    return EvidenceStore(root=str(tmp_path / "uploads"), url_path="/uploads")


@pytest.fixture
async def services(directory, mailer, store):
    http = httpx.AsyncClient(transport=httpx.MockTransport(nominatim_handler()))
    svc = Services.build(http=http, mailer=mailer, store=store, directory=directory)
    yield svc
    await svc.aclose()


async def make_report(db, user_id: str = "user-1", **fields) -> Dict:
    created = await crud.insert_report(db, user_id=user_id)
    if fields:
        await crud.update_report_fields(db, created["id"], fields)
        await db.commit()
    return await crud.get_report(db, created["id"])


async def place_report(db, report_id: int, lat: float, lng: float, *, postal_code=None, authority_id=None):
    await crud.set_report_location(
        db, report_id, lat=lat, lng=lng, address=None,
        postal_code=postal_code, authority_id=authority_id,
    )
    await db.commit()
