import httpx
import pytest

from ruo.errors import ExternalServiceError
from ruo.services.directory import DirectoryClient
from ruo.services.geocoding import NominatimGeocoder

from conftest import BERLIN, nominatim_handler


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ---------- geocoding ----------

async def test_reverse_geocode_extracts_postcode():
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        seen["ua"] = request.headers.get("user-agent")
        return nominatim_handler()(request)

    async with _client(handler) as http:
        loc = await NominatimGeocoder(http, language="de", user_agent="RUO-Test/1.0").normalize(*BERLIN)

    assert loc.postal_code == "10115"
    assert loc.locality == "Berlin"
    assert "Invalidenstraße" in loc.address
    assert seen["params"]["accept-language"] == "de"
    assert seen["params"]["lat"] == "52.520008"
    assert seen["ua"] == "RUO-Test/1.0"


@pytest.mark.parametrize("handler", [
    nominatim_handler(status=503),
    nominatim_handler(postcode=None),
    lambda request: httpx.Response(200, content=b"<html>"),
])
async def test_reverse_geocode_failures_yield_none(handler):
    async with _client(handler) as http:
        assert await NominatimGeocoder(http).normalize(*BERLIN) is None


async def test_reverse_geocode_transport_error_yields_none():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    async with _client(handler) as http:
        assert await NominatimGeocoder(http).normalize(*BERLIN) is None


@pytest.mark.parametrize("body", [
    {"display_name": 12345, "address": {"postcode": "10115"}},
    {"display_name": ["x"], "address": {"postcode": "10115"}},
    {"display_name": "Berlin", "address": {"postcode": "10115", "city": {"name": "Berlin"}}},
])
async def test_reverse_geocode_malformed_fields_yield_none(body):
    async with _client(lambda request: httpx.Response(200, json=body)) as http:
        assert await NominatimGeocoder(http).normalize(*BERLIN) is None


# ---------- directory ----------

async def test_directory_lookup_parses_record():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["key"] = request.headers.get("x-api-key")
        return httpx.Response(200, json={
            "name": "Ordnungsamt Berlin-Mitte", "zip": "10115",
            "email": "ordnungsamt@ba-mitte.berlin.de",
            "latitude": 52.53, "longitude": 13.38, "personal_email": None,
            "prefixes": ["OA"],
        })

    async with _client(handler) as http:
        entry = await DirectoryClient(http, base_url="https://dir.test/api", api_key="k").lookup("10115")

    assert seen["url"] == "https://dir.test/api/districts/10115"
    assert seen["key"] == "k"
    assert entry.name == "Ordnungsamt Berlin-Mitte"
    assert entry.personal_email is False


async def test_directory_404_means_no_coverage():
    async with _client(lambda r: httpx.Response(404)) as http:
        assert await DirectoryClient(http, api_key="k").lookup("99999") is None


@pytest.mark.parametrize("response", [
    httpx.Response(500),
    httpx.Response(200, json={"zip": "10115"}),
    httpx.Response(200, content=b"not json"),
])
async def test_directory_errors_raise(response):
    async with _client(lambda r: response) as http:
        with pytest.raises(ExternalServiceError):
            await DirectoryClient(http, api_key="k").lookup("10115")


async def test_directory_timeout_raises():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    async with _client(handler) as http:
        with pytest.raises(ExternalServiceError) as exc:
            await DirectoryClient(http, api_key="k").lookup("10115")
    assert "timeout" in exc.value.message


async def test_directory_without_api_key_raises():
    async with _client(lambda r: httpx.Response(200, json={})) as http:
        with pytest.raises(ExternalServiceError):
            await DirectoryClient(http, api_key="").lookup("10115")
