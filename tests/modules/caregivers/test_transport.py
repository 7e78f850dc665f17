import json

import httpx
import pytest

from carealarm.modules.caregivers.transport import ExpoPushTransport, PushMessage


def _message() -> PushMessage:
    return PushMessage(to="ExponentPushToken[abc]", title="MEDICATION ALERT", body="Pat missed a dose")


def _transport(handler, config) -> ExpoPushTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ExpoPushTransport(client=client, config=config)


@pytest.mark.parametrize(
    "body, confirmed",
    [
        ({"data": {"status": "ok", "id": "r1"}}, True),
        ({"data": {"status": "error", "details": {"error": "DeviceNotRegistered"}}}, False),
        ({"data": [{"status": "ok"}]}, False),
        ({"errors": [{"code": "PUSH_TOO_MANY"}]}, False),
        ([], False),
    ],
)
def test_parse_receipt(body, confirmed: bool) -> None:
    assert ExpoPushTransport.parse_receipt(body).confirmed is confirmed


@pytest.mark.asyncio
async def test_send_posts_message(config) -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"data": {"status": "ok"}})

    transport = _transport(handler, config)
    receipt = await transport.send(_message())

    assert receipt.confirmed is True
    assert seen[0]["to"] == "ExponentPushToken[abc]"
    assert seen[0]["priority"] == "high"
    assert seen[0]["badge"] == 1


@pytest.mark.asyncio
async def test_send_reports_network_error(config) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    receipt = await _transport(handler, config).send(_message())

    assert receipt.confirmed is False


@pytest.mark.asyncio
async def test_send_reports_malformed_body(config) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, content=b"<html>bad gateway</html>")

    receipt = await _transport(handler, config).send(_message())

    assert receipt.confirmed is False
