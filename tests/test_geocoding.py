import asyncio

import httpx
import pytest

from membermap.core.config import settings
from membermap.models.dto import Region
from membermap.services.geocoding import (
    GeocodingClient,
    GeocodingError,
    parse_coordinates,
    region_query,
)


def _client(handler, amap_key=""):
    return GeocodingClient(
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        amap_key=amap_key,
    )


def _is_amap(request):
    return request.url.host == "restapi.amap.com"


def _no_network(request):
    raise AssertionError(f"unexpected request to {request.url}")


@pytest.fixture(autouse=True)
def no_retries(monkeypatch):
    monkeypatch.setattr(settings, "GEOCODER_MAX_RETRIES", 0)


def test_parse_coordinates():
    assert parse_coordinates("39.9, 116.4") == (39.9, 116.4)
    assert parse_coordinates("39.9 116.4") == (39.9, 116.4)
    # lng,lat order is detected from the first value
    assert parse_coordinates("116.4,39.9") == (39.9, 116.4)
    assert parse_coordinates("Beijing") is None


def test_parse_coordinates_out_of_range():
    with pytest.raises(GeocodingError) as exc_info:
        parse_coordinates("95, 200")
    assert exc_info.value.error == "INVALID_COORDINATES"
    assert exc_info.value.status_code == 400


def test_region_query():
    assert region_query("中国", "广东", "深圳") == "中国广东深圳"
    assert region_query("日本", "Tokyo") == "Tokyo"
    assert region_query("日本") == "日本"


def test_amap_reverse_geocode():
    def handler(request):
        assert _is_amap(request)
        assert request.url.params["location"] == "116.4,39.9"
        return httpx.Response(200, json={
            "status": "1",
            "regeocode": {"addressComponent": {
                "country": "中国", "province": "北京市", "city": [], "district": "朝阳区",
            }},
        })

    region = asyncio.run(_client(handler, amap_key="test-key").reverse_geocode(39.9, 116.4))
    assert region == Region(country="中国", province="北京", city="北京", district="朝阳")


def test_falls_back_to_nominatim():
    def handler(request):
        if _is_amap(request):
            return httpx.Response(200, json={"status": "0", "info": "INVALID_USER_KEY"})
        assert request.headers["user-agent"] == settings.NOMINATIM_USER_AGENT
        return httpx.Response(200, json={"address": {
            "country": "中国", "state": "广东省", "city": "深圳市", "district": "南山区",
        }})

    region = asyncio.run(_client(handler, amap_key="test-key").reverse_geocode(22.53, 113.93))
    assert region == Region(country="中国", province="广东", city="深圳", district="南山")


def test_nominatim_county_result_asks_for_the_city():
    def handler(request):
        if request.url.params["zoom"] == "8":
            return httpx.Response(200, json={"address": {
                "country": "中国", "state": "浙江省", "city": "杭州市",
            }})
        return httpx.Response(200, json={"address": {
            "country": "中国", "state": "浙江省", "county": "桐庐县",
        }})

    region = asyncio.run(_client(handler).reverse_geocode(29.79, 119.69))
    assert region.city == "杭州"
    assert region.district == "桐庐"


def test_reverse_geocode_fails_when_every_provider_fails():
    def handler(request):
        return httpx.Response(500)

    with pytest.raises(GeocodingError) as exc_info:
        asyncio.run(_client(handler, amap_key="test-key").reverse_geocode(0.0, 0.0))
    assert exc_info.value.error == "GEOCODING_FAILED"
    assert exc_info.value.status_code == 502


def test_geocode_accepts_literal_coordinates():
    assert asyncio.run(_client(_no_network).geocode("31.23,121.47")) == (31.23, 121.47)


def test_geocode_rejects_short_address():
    with pytest.raises(GeocodingError) as exc_info:
        asyncio.run(_client(_no_network).geocode(" a "))
    assert exc_info.value.error == "INVALID_ADDRESS"
    assert exc_info.value.status_code == 400


def test_geocode_via_amap():
    def handler(request):
        assert request.url.params["address"] == "北京市朝阳区"
        return httpx.Response(200, json={"status": "1", "geocodes": [{"location": "116.443,39.921"}]})

    assert asyncio.run(_client(handler, amap_key="test-key").geocode("北京市朝阳区")) == (39.921, 116.443)


def test_geocode_address_not_found():
    def handler(request):
        return httpx.Response(200, json=[])

    with pytest.raises(GeocodingError) as exc_info:
        asyncio.run(_client(handler).geocode("nowhere at all"))
    assert exc_info.value.error == "ADDRESS_NOT_FOUND"
    assert exc_info.value.status_code == 404


def test_locate_region_queries_by_name():
    seen = []

    def handler(request):
        seen.append(request.url.params["q"])
        return httpx.Response(200, json=[{"lat": "22.54", "lon": "114.06"}])

    assert asyncio.run(_client(handler).locate_region("中国", "广东", "深圳")) == (22.54, 114.06)
    assert seen == ["中国广东深圳"]


def test_locate_ip():
    def handler(request):
        assert request.url.path == "/203.0.113.7/json/"
        return httpx.Response(200, json={
            "latitude": 31.23, "longitude": 121.47,
            "country_name": "China", "region": "Shanghai", "city": "Shanghai",
        })

    lat, lng, region = asyncio.run(_client(handler).locate_ip("203.0.113.7"))
    assert (lat, lng) == (31.23, 121.47)
    assert region == Region(country="中国", province="上海", city="上海")


def test_locate_ip_reserved_address():
    def handler(request):
        return httpx.Response(200, json={"error": True, "reason": "Reserved IP Address"})

    with pytest.raises(GeocodingError) as exc_info:
        asyncio.run(_client(handler).locate_ip("127.0.0.1"))
    assert exc_info.value.error == "IP_LOCATION_FAILED"
    assert exc_info.value.status_code == 404


def test_timeout_is_reported():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(GeocodingError) as exc_info:
        asyncio.run(_client(handler).locate_ip("203.0.113.7"))
    assert exc_info.value.error == "GEOCODER_TIMEOUT"
    assert exc_info.value.status_code == 504
