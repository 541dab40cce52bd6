import json

import pytest
from aiohttp import web
from aiohttp import test_utils

from pharmacy_checker.config import ScannerConfig
from pharmacy_checker.errors import DeliveryError, PersistenceError
from pharmacy_checker.export.http_sink import BackendSink
from pharmacy_checker.export.payload_log import PayloadLog

PAYLOAD = {
    "pharmacyId": "drmax:ibalgin-400",
    "product": "Ibalgin",
    "timestamp": "2026-10-19T08:30:00Z",
    "status": "ok",
    "price": 3.99,
    "details": {"sourceName": "Ibalgin 400"},
}


def _backend(status=202):
    received = []

    async def availability(request):
        received.append(await request.json())
        return web.json_response({"accepted": status < 400}, status=status)

    app = web.Application()
    app.router.add_post("/internal/availability", availability)
    return app, received


@pytest.mark.asyncio
async def test_backend_sink_posts_json():
    app, received = _backend()
    async with test_utils.TestServer(app) as server:
        sink = BackendSink(ScannerConfig(backend_url=str(server.make_url("/"))))
        try:
            await sink.deliver(PAYLOAD)
        finally:
            await sink.close()

    assert received == [PAYLOAD]


@pytest.mark.asyncio
async def test_backend_sink_rejects_error_status():
    app, received = _backend(status=500)
    async with test_utils.TestServer(app) as server:
        sink = BackendSink(ScannerConfig(backend_url=str(server.make_url("/"))))
        try:
            with pytest.raises(DeliveryError) as info:
                await sink.deliver(PAYLOAD)
        finally:
            await sink.close()

    assert info.value.status == 500
    assert len(received) == 1


@pytest.mark.asyncio
async def test_backend_sink_rejects_unfollowed_redirect_status():
    async def not_modified(request):
        return web.Response(status=304)

    app = web.Application()
    app.router.add_post("/internal/availability", not_modified)
    async with test_utils.TestServer(app) as server:
        sink = BackendSink(ScannerConfig(backend_url=str(server.make_url("/"))))
        try:
            with pytest.raises(DeliveryError) as info:
                await sink.deliver(PAYLOAD)
        finally:
            await sink.close()

    assert info.value.status == 304


@pytest.mark.asyncio
async def test_backend_sink_unreachable():
    sink = BackendSink(ScannerConfig(backend_url="http://127.0.0.1:9", backend_timeout=2))
    try:
        with pytest.raises(DeliveryError) as info:
            await sink.deliver(PAYLOAD)
    finally:
        await sink.close()
    assert info.value.status is None


def test_payload_log_appends_lines(tmp_path):
    log = PayloadLog(tmp_path / "state" / "sent_payloads.ndjson")

    log.append(PAYLOAD)
    log.append({**PAYLOAD, "status": "not_found"})

    lines = log.path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["status"] for line in lines] == ["ok", "not_found"]


def test_payload_log_keeps_unicode(tmp_path):
    log = PayloadLog(tmp_path / "log.ndjson")
    log.append({"details": {"availabilityText": "Áno, na sklade"}})
    assert "Áno, na sklade" in log.path.read_text(encoding="utf-8")


def test_payload_log_unwritable(tmp_path):
    blocker = tmp_path / "state"
    blocker.write_text("", encoding="utf-8")
    with pytest.raises(PersistenceError):
        PayloadLog(blocker / "log.ndjson").append(PAYLOAD)
