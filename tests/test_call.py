import base64
import json
import pathlib
import sys
from dataclasses import dataclass

import pytest

sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1]))

from stratum_client.client import call, delete, get, post, put, rows, unmarshal
from stratum_client.credential import CredentialCell
from stratum_client.errors import (
    APIError,
    NotOpenedError,
    ProtocolError,
    SerializationError,
    TransportError,
    UsageError,
)
from stratum_client.session import StratumSession
from stratum_client.transport import Transport, TransportResponse


def json_response(status, body, reason="OK"):
    return TransportResponse(
        status,
        reason,
        {"Content-Type": "application/json"},
        json.dumps(body).encode(),
    )


LOGIN = {"access_token": "abc", "expires_in": 60, "token_type": "bearer"}


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class ListTransport(Transport):
    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def request(self, method, url, headers, data, timeout, verify):
        self.calls.append(
            {"method": method, "url": url, "headers": dict(headers), "data": data,
             "timeout": timeout, "verify": verify}
        )
        resp = self.responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp


def make_session(transport, clock=None, **kwargs):
    settings = {
        "username": "apiclienttest",
        "password": "secret",
        "base_url": "https://server/stratum/v1",
    }
    settings.update(kwargs)
    return StratumSession(
        transport=transport,
        credential=CredentialCell(clock=clock or FakeClock()),
        **settings,
    )


def opened_session(responses, clock=None, **kwargs):
    transport = ListTransport([json_response(200, LOGIN)] + responses)
    session = make_session(transport, clock, **kwargs)
    session.open()
    return session, transport


@dataclass
class Platform:
    id: int
    name: str


def test_login_uses_basic_auth_against_login_resource():
    session, transport = opened_session([])
    login = transport.calls[0]
    assert login["method"] == "GET"
    assert login["url"] == "https://server/login/v1"
    expected = base64.b64encode(b"apiclienttest:secret").decode()
    assert login["headers"]["Authorization"] == "Basic " + expected
    assert login["data"] is None


def test_get_uses_bearer_token_and_fixed_headers():
    session, transport = opened_session([json_response(200, [{"id": 1, "name": "Linux"}])])
    body = call(session, "get", "platform/?orderby=name&select=id,name")
    assert json.loads(body) == [{"id": 1, "name": "Linux"}]
    req = transport.calls[1]
    assert req["method"] == "GET"
    assert req["url"] == "https://server/stratum/v1/platform/?orderby=name&select=id,name"
    assert req["headers"]["Authorization"] == "Bearer abc"
    assert req["headers"]["Content-Type"] == "application/json"
    assert req["headers"]["Accept"] == "application/json"
    assert req["headers"]["User-Agent"] == "StratumClient/1.0"
    assert req["timeout"] == 30
    assert req["verify"] is True


def test_user_agent_tag_and_tls_toggle():
    session, transport = opened_session(
        [json_response(200, [])], user_agent="inventory-sync", insecure_skip_verify=True, timeout=5
    )
    call(session, "GET", "platform/")
    req = transport.calls[1]
    assert req["headers"]["User-Agent"] == "StratumClient/1.0 (inventory-sync)"
    assert req["verify"] is False
    assert req["timeout"] == 5


def test_separators_are_normalised():
    session, transport = opened_session(
        [json_response(200, [])], base_url="https://server/v1/"
    )
    call(session, "GET", "/platform/?x=1")
    assert transport.calls[1]["url"] == "https://server/v1/platform/?x=1"


def test_get_with_data_is_usage_error_without_network():
    transport = ListTransport([])
    session = make_session(transport)
    with pytest.raises(UsageError):
        call(session, "get", "platform/", {"name": "Linux"})
    assert transport.calls == []


def test_call_before_open_is_not_opened_error():
    transport = ListTransport([])
    session = make_session(transport)
    with pytest.raises(NotOpenedError):
        call(session, "POST", "platform/", {"name": "Linux"})
    assert transport.calls == []


def test_post_decodes_into_rows():
    session, transport = opened_session(
        [json_response(201, [{"id": 1, "name": "Linux"}], reason="Created")]
    )
    out = post(session, "platform/?returning=*", {"name": "Linux"}, into=rows(Platform))
    assert out == [Platform(1, "Linux")]
    req = transport.calls[1]
    assert req["method"] == "POST"
    assert json.loads(req["data"]) == {"name": "Linux"}


def test_put_sends_bytes_verbatim():
    session, transport = opened_session([json_response(200, [{"id": 1, "name": "Linux"}])])
    raw = b'{"guestos":"NOSUCHTHING"}'
    out = put(session, "platform/?returning=*&where=id=1", raw, into=list)
    assert out == [{"id": 1, "name": "Linux"}]
    assert transport.calls[1]["data"] == raw
    assert transport.calls[1]["method"] == "PUT"


def test_delete_without_destination_skips_decode():
    resp = TransportResponse(200, "OK", {"Content-Type": "application/json"}, b"not json")
    session, transport = opened_session([resp])
    assert delete(session, "platform/?where=id=1") is None
    assert transport.calls[1]["method"] == "DELETE"


def test_get_decode_failure_is_serialization_error():
    resp = TransportResponse(200, "OK", {"Content-Type": "application/json"}, b"{broken")
    session, _ = opened_session([resp])
    with pytest.raises(SerializationError):
        get(session, "platform/", into=list)


def test_rows_conversion_failure_is_serialization_error():
    session, _ = opened_session([json_response(200, [{"id": 1, "unknown": "x"}])])
    with pytest.raises(SerializationError):
        get(session, "platform/", into=rows(Platform))


def test_unencodable_payload_is_serialization_error():
    session, transport = opened_session([])
    with pytest.raises(SerializationError):
        unmarshal(session, "POST", "platform/", {"when": object()})
    assert len(transport.calls) == 1


def test_json_error_response_becomes_api_error():
    error = {
        "error": "query failed",
        "backend": {
            "sql": "SELECT nope",
            "severity": "ERROR",
            "message": "column does not exist",
            "detail": "nope",
            "code": "42703",
        },
    }
    session, _ = opened_session([json_response(400, error, reason="Bad Request")])
    with pytest.raises(APIError) as exc:
        get(session, "platform/?select=nope", into=list)
    err = exc.value
    assert err.status_code == 400
    assert err.status == "400 Bad Request"
    assert err.message == "query failed"
    assert err.backend.sql == "SELECT nope"
    assert err.backend.severity == "ERROR"
    assert err.backend.message == "column does not exist"
    assert err.backend.detail == "nope"
    assert err.backend.code == "42703"
    assert str(err) == (
        "400 Bad Request: query failed: sql: SELECT nope: message: column does not exist"
        ": code: 42703: severity: ERROR: detail: nope"
    )


def test_json_error_without_backend():
    session, _ = opened_session([json_response(404, {"error": "no such table"}, reason="Not Found")])
    with pytest.raises(APIError) as exc:
        call(session, "GET", "nosuchtable/")
    assert exc.value.backend is None
    assert str(exc.value) == "404 Not Found: no such table"


def test_undecodable_json_error_is_serialization_error():
    resp = TransportResponse(500, "Internal Server Error", {"Content-Type": "application/json"}, b"<html>")
    session, _ = opened_session([resp])
    with pytest.raises(SerializationError):
        call(session, "GET", "platform/")


def test_non_json_error_is_transport_error_with_status_line():
    resp = TransportResponse(502, "Bad Gateway", {"Content-Type": "text/html"}, b"<html>")
    session, _ = opened_session([resp])
    with pytest.raises(TransportError) as exc:
        call(session, "GET", "platform/")
    assert str(exc.value) == "502 Bad Gateway"
    assert exc.value.status_code == 502


def test_success_with_other_content_type_is_protocol_error():
    resp = TransportResponse(200, "OK", {"Content-Type": "text/plain"}, b"hello")
    session, _ = opened_session([resp])
    with pytest.raises(ProtocolError):
        call(session, "GET", "platform/")


def test_json_content_type_parameters_are_accepted():
    resp = TransportResponse(200, "OK", {"content-type": "application/json; charset=utf-8"}, b"[]")
    session, _ = opened_session([resp])
    assert call(session, "GET", "platform/") == b"[]"


def test_network_failure_is_transport_error():
    session, _ = opened_session([ConnectionError("connection refused")])
    with pytest.raises(TransportError) as exc:
        call(session, "GET", "platform/")
    assert "connection refused" in str(exc.value)


def test_expired_token_triggers_one_login():
    clock = FakeClock(1000.0)
    session, transport = opened_session(
        [json_response(200, LOGIN), json_response(200, [])], clock=clock
    )
    assert session.credential.valid_until == 1060.0
    clock.now = 1061.0
    call(session, "GET", "platform/")
    urls = [c["url"] for c in transport.calls]
    assert urls == [
        "https://server/login/v1",
        "https://server/login/v1",
        "https://server/stratum/v1/platform/",
    ]
    assert transport.calls[2]["headers"]["Authorization"] == "Bearer abc"


def test_fresh_token_is_reused():
    clock = FakeClock(1000.0)
    session, transport = opened_session([json_response(200, []), json_response(200, [])], clock=clock)
    clock.now = 1059.0
    call(session, "GET", "platform/")
    call(session, "GET", "platform/")
    assert [c["url"] for c in transport.calls].count("https://server/login/v1") == 1


def test_token_at_expiry_instant_is_refreshed():
    clock = FakeClock(1000.0)
    session, transport = opened_session([json_response(200, LOGIN), json_response(200, [])], clock=clock)
    clock.now = 1060.0
    call(session, "GET", "platform/")
    assert [c["url"] for c in transport.calls].count("https://server/login/v1") == 2


def test_failed_refresh_propagates_and_leaves_token_cleared():
    clock = FakeClock(1000.0)
    denied = json_response(401, {"error": "invalid credentials"}, reason="Unauthorized")
    session, transport = opened_session([denied], clock=clock)
    clock.now = 2000.0
    with pytest.raises(APIError) as exc:
        call(session, "GET", "platform/")
    assert exc.value.status_code == 401
    assert session.credential.token == ""
    assert not session.credential.is_valid()
    assert len(transport.calls) == 2
