import httpx
import pytest

from leadscout.decode import extract_json_array, extract_json_object
from leadscout.liveness import probe_website


def test_extract_array_from_prose_and_fences():
    text = 'Here you go:\n```json\n[{"name": "A"}, {"name": "B"}]\n```\nAnything else?'
    assert extract_json_array(text) == [{"name": "A"}, {"name": "B"}]


def test_extract_skips_broken_candidates():
    assert extract_json_array("[not json] then [1, 2]") == [1, 2]
    assert extract_json_object('{"a": [1, 2]} trailing') == {"a": [1, 2]}
    assert extract_json_object("[1, 2]") is None
    assert extract_json_array(None) is None
    assert extract_json_array('[{"name": "trunc') is None


@pytest.mark.asyncio
async def test_probe_falls_back_to_get_when_head_refused():
    methods = []

    def handler(request):
        methods.append(request.method)
        if request.method == "HEAD":
            return httpx.Response(405)
        return httpx.Response(200, text="ok")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        assert await probe_website("acme.de", timeout=1, client=client)
    assert methods == ["HEAD", "GET"]


@pytest.mark.asyncio
async def test_probe_reports_dead_sites():
    def handler(request):
        if request.url.host == "gone.example":
            raise httpx.ConnectError("nxdomain", request=request)
        return httpx.Response(500)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        assert not await probe_website("https://gone.example", timeout=1, client=client)
        assert not await probe_website("https://broken.example", timeout=1, client=client)
        assert not await probe_website("", timeout=1, client=client)
