import io

import pytest
import requests

from rmv_client import RmvClient, UpstreamError


def make_response(status: int, body: bytes) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp._content = body
    resp.raw = io.BytesIO(body)
    resp.headers["Content-Type"] = "application/json"
    return resp


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.exc is not None:
            raise self.exc
        return self.response


def test_fetch_sends_query_and_timeout():
    session = FakeSession(make_response(200, b'{"Departure":[{"name":"Tram 12"}]}'))
    client = RmvClient(
        "key123",
        base_url="https://rmv.test/hapi/departureBoard",
        duration_min=45,
        connect_timeout_sec=2.0,
        read_timeout_sec=8.0,
        session=session,
    )

    data = client.fetch("900123456")

    assert data == {"Departure": [{"name": "Tram 12"}]}
    url, kwargs = session.calls[0]
    assert url == "https://rmv.test/hapi/departureBoard"
    assert kwargs["params"] == {
        "accessId": "key123",
        "id": "900123456",
        "format": "json",
        "duration": "45",
    }
    assert kwargs["timeout"] == (2.0, 8.0)
    assert kwargs["headers"]["Accept"] == "application/json"


def test_default_timeout_is_ten_seconds():
    client = RmvClient("key", session=FakeSession())
    assert sum(client.timeout) == pytest.approx(10.0)


def test_fetch_passes_through_any_json_shape():
    client = RmvClient("key", session=FakeSession(make_response(200, b"[1, 2, 3]")))
    assert client.fetch("stop") == [1, 2, 3]


def test_non_200_carries_status():
    client = RmvClient("secret_key", session=FakeSession(make_response(503, b"busy")))
    with pytest.raises(UpstreamError) as excinfo:
        client.fetch("stop")
    assert excinfo.value.status == 503
    assert "secret_key" not in str(excinfo.value)


def test_timeout_is_reported_not_retried():
    session = FakeSession(exc=requests.Timeout("slow"))
    client = RmvClient("key", session=session)
    with pytest.raises(UpstreamError) as excinfo:
        client.fetch("stop")
    assert excinfo.value.status == 504
    assert len(session.calls) == 1


def test_connection_error():
    client = RmvClient("key", session=FakeSession(exc=requests.ConnectionError("down")))
    with pytest.raises(UpstreamError) as excinfo:
        client.fetch("stop")
    assert excinfo.value.status == 504


def test_invalid_json_is_upstream_error():
    client = RmvClient("key", session=FakeSession(make_response(200, b"<html>")))
    with pytest.raises(UpstreamError) as excinfo:
        client.fetch("stop")
    assert excinfo.value.status == 502


@pytest.mark.parametrize("status,body", [(200, b"{}"), (500, b""), (200, b"not json")])
def test_response_closed_on_every_path(monkeypatch, status, body):
    resp = make_response(status, body)
    closed = []
    monkeypatch.setattr(resp, "close", lambda: closed.append(True))
    client = RmvClient("key", session=FakeSession(resp))

    try:
        client.fetch("stop")
    except UpstreamError:
        pass

    assert closed == [True]
