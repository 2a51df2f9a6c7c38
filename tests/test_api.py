import httpx
import pytest

from ruo.main import app
from ruo.services.geocoding import NominatimGeocoder

from conftest import BERLIN

JPEG = b"\xff\xd8\xff\xe0" + b"0" * 64


@pytest.fixture
async def client(sessionmaker, services):
    app.state.sessionmaker = sessionmaker
    app.state.services = services
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def _as(user_id, name=None):
    headers = {"x-user-id": user_id}
    if name:
        headers["x-user-name"] = name
    return headers


async def _create(client, user_id="user-1", name=None):
    r = await client.post("/reports", headers=_as(user_id, name))
    assert r.status_code == 200, r.text
    return r.json()


async def _upload(client, report_id, user_id="user-1", lat=None, lng=None, ctype="image/jpeg", data=JPEG):
    form = {}
    if lat is not None:
        form = {"lat": str(lat), "lng": str(lng)}
    return await client.post(
        f"/reports/{report_id}/evidence",
        headers=_as(user_id),
        files={"file": ("kamera.jpg", data, ctype)},
        data=form,
    )


async def test_health(client):
    r = await client.get("/health")
    assert r.json() == {"ok": True}


async def test_requester_identity_required(client):
    assert (await client.post("/reports")).status_code == 401
    assert (await client.get("/reports")).status_code == 401


async def test_create_list_and_detail(client):
    created = await _create(client)
    assert created["status"] == "draft"
    assert created["case_number"].startswith("RUO-")

    listed = (await client.get("/reports", headers=_as("user-1"))).json()
    assert [r["id"] for r in listed] == [created["id"]]

    detail = (await client.get(f"/reports/{created['id']}", headers=_as("user-1"))).json()
    assert detail["report"]["case_number"] == created["case_number"]
    assert detail["evidence"] == []
    assert detail["authority"] is None


async def test_reports_are_private_to_their_owner(client):
    created = await _create(client, "alice")

    r = await client.get(f"/reports/{created['id']}", headers=_as("bob"))
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"

    r = await client.post(f"/reports/{created['id']}/submit", headers=_as("bob"))
    assert r.status_code == 404


async def test_gps_photo_sets_location_and_authority(client, directory):
    created = await _create(client)

    r = await _upload(client, created["id"], lat=BERLIN[0], lng=BERLIN[1])

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["evidence"]["media_kind"] == "image"
    assert body["evidence"]["url"].endswith("-kamera.jpg")
    assert body["location"]["postal_code"] == "10115"
    assert body["location"]["authority"]["email"] == "ordnungsamt@ba-mitte.berlin.de"
    assert body["proximity_warning"] is None
    assert directory.calls == ["10115"]


async def test_second_report_nearby_gets_warning(client):
    first = await _create(client, "alice")
    await _upload(client, first["id"], "alice", lat=BERLIN[0], lng=BERLIN[1])
    second = await _create(client, "bob")

    r = await _upload(client, second["id"], "bob", lat=BERLIN[0] + 0.000135, lng=BERLIN[1])

    warning = r.json()["proximity_warning"]
    assert warning["found"] is True
    assert warning["count"] == 1
    assert warning["reports"][0]["case_number"] == first["case_number"]
    assert 10 < warning["reports"][0]["distance_m"] < 20

    nearby = (await client.get(f"/reports/{second['id']}/nearby", headers=_as("bob"))).json()
    assert [n["report_id"] for n in nearby] == [first["id"]]


async def test_video_gps_is_ignored(client):
    created = await _create(client)

    r = await _upload(client, created["id"], lat=BERLIN[0], lng=BERLIN[1], ctype="video/mp4")

    body = r.json()
    assert body["evidence"]["media_kind"] == "video"
    assert body["evidence"]["lat"] is None
    assert body["location"] is None


async def test_rejects_other_media(client):
    created = await _create(client)
    r = await _upload(client, created["id"], ctype="application/pdf")
    assert r.status_code == 415


async def test_submit_flow(client, mailer):
    created = await _create(client, "user-1", "Erika")
    await _upload(client, created["id"], lat=BERLIN[0], lng=BERLIN[1])

    r = await client.post(f"/reports/{created['id']}/submit", headers=_as("user-1"))
    assert r.status_code == 200, r.text
    out = r.json()
    assert out["status"] == "submitted"
    assert out["sender"].startswith(created["case_number"].lower() + "@")
    assert len(mailer.sent) == 1

    again = await client.post(f"/reports/{created['id']}/submit", headers=_as("user-1"))
    assert again.status_code == 400
    assert again.json() == {"error": "validation_error", "message": "already submitted"}
    assert len(mailer.sent) == 1

    detail = (await client.get(f"/reports/{created['id']}", headers=_as("user-1"))).json()
    assert len(detail["emails"]) == 1
    assert detail["history"][0]["new_status"] == "submitted"

    public = (await client.get("/public/reports")).json()
    assert [p["case_number"] for p in public] == [created["case_number"]]
    assert public[0]["user_name"] == "Erika"

    one = await client.get(f"/public/reports/{created['case_number'].lower()}")
    assert one.status_code == 200
    assert one.json()["report"]["case_number"] == created["case_number"]
    evidence = one.json()["evidence"]
    assert [e["filename"] for e in evidence] == ["kamera.jpg"]
    assert evidence[0]["mime_type"] == "image/jpeg"
    assert evidence[0]["url"].endswith("-kamera.jpg")


async def test_submit_without_evidence(client, mailer):
    created = await _create(client)
    r = await client.post(f"/reports/{created['id']}/submit", headers=_as("user-1"))
    assert r.status_code == 400
    assert r.json()["message"] == "no evidence"
    assert mailer.sent == []


async def test_submit_mail_failure_is_502(client, mailer):
    created = await _create(client)
    await _upload(client, created["id"], lat=BERLIN[0], lng=BERLIN[1])
    mailer.fail = True

    r = await client.post(f"/reports/{created['id']}/submit", headers=_as("user-1"))

    assert r.status_code == 502
    report = (await client.get(f"/reports/{created['id']}", headers=_as("user-1"))).json()["report"]
    assert report["status"] == "draft"


async def test_drafts_are_not_public(client):
    created = await _create(client)
    assert (await client.get("/public/reports")).json() == []
    assert (await client.get(f"/public/reports/{created['case_number']}")).status_code == 404


async def test_update_and_delete_draft(client):
    created = await _create(client)
    await _upload(client, created["id"])

    r = await client.put(
        f"/reports/{created['id']}",
        headers=_as("user-1"),
        json={"violation_type": "Kamera auf Gehweg", "hide_username": True},
    )
    assert r.status_code == 200

    r = await client.delete(f"/reports/{created['id']}", headers=_as("user-1"))
    assert r.status_code == 200
    assert (await client.get(f"/reports/{created['id']}", headers=_as("user-1"))).status_code == 404


async def test_manual_location(client):
    created = await _create(client)

    r = await client.put(
        f"/reports/{created['id']}/location",
        headers=_as("user-1"),
        json={"lat": BERLIN[0], "lng": BERLIN[1], "address": "Invalidenstraße 1", "postal_code": "10115"},
    )

    assert r.status_code == 200
    assert r.json()["authority"]["name"] == "Bezirksamt Mitte"


async def test_nearby_requires_location(client):
    created = await _create(client)
    r = await client.get(f"/reports/{created['id']}/nearby", headers=_as("user-1"))
    assert r.status_code == 400


async def test_authority_lookup(client):
    r = await client.get("/authorities/10115")
    assert r.status_code == 200
    assert r.json()["postal_code"] == "10115"

    r = await client.get("/authorities/99999")
    assert r.status_code == 404
    assert r.json()["message"] == "no responsible authority"


async def test_reverse(client):
    r = await client.get("/reverse", params={"lat": BERLIN[0], "lng": BERLIN[1]})
    assert r.json()["ok"] is True
    assert r.json()["postal_code"] == "10115"


async def test_admin_routes_need_token(client, monkeypatch):
    monkeypatch.setattr("ruo.config.ADMIN_TOKEN", "s3cret")
    created = await _create(client)
    await _upload(client, created["id"], lat=BERLIN[0], lng=BERLIN[1])
    await client.post(f"/reports/{created['id']}/submit", headers=_as("user-1"))

    url = f"/admin/reports/{created['id']}/status"
    assert (await client.post(url, json={"status": "in_progress"})).status_code == 401

    r = await client.post(url, json={"status": "in_progress"}, headers={"x-admin-token": "s3cret"})
    assert r.status_code == 200
    assert r.json()["old_status"] == "submitted"

    r = await client.post(url, json={"status": "submitted"}, headers={"x-admin-token": "s3cret"})
    assert r.status_code == 400

    r = await client.post("/admin/authorities/refresh", headers={"x-admin-token": "s3cret"})
    assert r.json() == {"ok": True, "refreshed": 0}


async def test_malformed_geocoder_answer_still_places_report(client, services, directory):
    def handler(request):
        return httpx.Response(200, json={"display_name": 12345, "address": {"postcode": "10115"}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        services.geocoder = NominatimGeocoder(http)
        created = await _create(client)

        r = await _upload(client, created["id"], lat=BERLIN[0], lng=BERLIN[1])

    assert r.status_code == 200, r.text
    assert r.json()["location"]["lat"] == BERLIN[0]
    assert r.json()["location"]["authority"] is None
    assert directory.calls == []
    report = (await client.get(f"/reports/{created['id']}", headers=_as("user-1"))).json()["report"]
    assert report["location_lat"] == BERLIN[0]
