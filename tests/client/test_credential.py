"""
Tests for the refreshing OAuth 2.0 credential.
"""

import threading
import time

import httpx
import pytest

from credflow.client.bearer import authorization_header_access_method, query_parameter_access_method
from credflow.client.client_auth import ClientParametersAuthentication
from credflow.client.credential import Credential
from credflow.errors import PreconditionViolation, TokenResponseException
from credflow.shared.auth import StoredCredential, TokenErrorResponse, TokenResponse

TOKEN_URL = "https://auth.example.com/token"
RESOURCE_URL = "https://api.example.com/resource"


class RecordingListener:
    def __init__(self):
        self.responses: list[TokenResponse] = []
        self.errors: list[TokenErrorResponse | None] = []

    def on_token_response(self, credential: Credential, token_response: TokenResponse) -> None:
        self.responses.append(token_response)

    def on_token_error_response(self, credential: Credential, token_error_response: TokenErrorResponse | None) -> None:
        self.errors.append(token_error_response)


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def credential(token_client, clock, listener):
    return Credential(
        authorization_header_access_method(),
        http_client=token_client,
        token_server_url=TOKEN_URL,
        client_authentication=ClientParametersAuthentication("id", "secret"),
        clock=clock,
        refresh_listeners=[listener],
    )


def resource_request() -> httpx.Request:
    return httpx.Request("GET", RESOURCE_URL)


class TestCredentialState:
    def test_expires_in_seconds(self, credential, clock):
        assert credential.expires_in_seconds is None
        credential.set_expires_in_seconds(3600)
        assert credential.expiration_time_milliseconds == clock.current_time_millis() + 3_600_000
        clock.advance(1_000_500)
        assert credential.expires_in_seconds == 2599

    def test_refresh_token_requires_refresh_collaborators(self, clock):
        credential = Credential(authorization_header_access_method(), clock=clock)
        credential.set_access_token("at")
        with pytest.raises(PreconditionViolation):
            credential.set_refresh_token("rt")
        # clearing is always allowed
        credential.set_refresh_token(None)

    def test_refresh_without_token_server_is_rejected(self, clock):
        credential = Credential(authorization_header_access_method(), clock=clock)
        # bypass the setter to reach the refresh-time check
        credential._refresh_token = "rt"
        with pytest.raises(PreconditionViolation):
            credential.execute_refresh_token()

    def test_method_required(self):
        with pytest.raises(PreconditionViolation):
            Credential(None)  # type: ignore[arg-type]

    def test_set_from_token_response_keeps_refresh_token(self, credential, clock):
        credential.set_from_token_response(TokenResponse(access_token="a1", refresh_token="r1", expires_in=60))
        credential.set_from_token_response(TokenResponse(access_token="a2", expires_in=120))

        assert credential.access_token == "a2"
        assert credential.refresh_token == "r1"
        assert credential.expiration_time_milliseconds == clock.current_time_millis() + 120_000

    def test_snapshot_is_a_copy(self, credential):
        credential.set_access_token("a").set_refresh_token("r").set_expiration_time_milliseconds(5)
        snapshot = credential.snapshot()
        credential.set_access_token("b")
        assert snapshot == StoredCredential(access_token="a", refresh_token="r", expiration_time_milliseconds=5)


class TestIntercept:
    def test_valid_token_is_attached_without_refresh(self, credential, token_endpoint):
        credential.set_access_token("valid").set_expires_in_seconds(3600)
        request = resource_request()
        credential.intercept(request)
        assert request.headers["Authorization"] == "Bearer valid"
        assert token_endpoint.call_count == 0

    def test_refreshes_inside_expiry_guard(self, credential, token_endpoint, clock, listener):
        token_endpoint.respond_json(access_token="fresh", expires_in=3600)
        credential.set_access_token("stale").set_refresh_token("rt").set_expires_in_seconds(3600)
        clock.advance((3600 - 59) * 1000)

        request = resource_request()
        credential.intercept(request)

        assert request.headers["Authorization"] == "Bearer fresh"
        assert token_endpoint.form() == {
            "grant_type": "refresh_token",
            "refresh_token": "rt",
            "client_id": "id",
            "client_secret": "secret",
        }
        assert credential.refresh_token == "rt"
        assert credential.expires_in_seconds == 3600
        assert [r.access_token for r in listener.responses] == ["fresh"]

    def test_no_refresh_outside_expiry_guard(self, credential, token_endpoint, clock):
        credential.set_access_token("valid").set_refresh_token("rt").set_expires_in_seconds(3600)
        clock.advance((3600 - 61) * 1000)
        credential.intercept(resource_request())
        assert token_endpoint.call_count == 0

    def test_missing_token_without_refresh_token_leaves_request_alone(self, credential, token_endpoint):
        request = resource_request()
        credential.intercept(request)
        assert "Authorization" not in request.headers
        assert token_endpoint.call_count == 0

    def test_server_error_keeps_stale_token(self, credential, token_endpoint, clock, listener):
        token_endpoint.respond_json(503, error="temporarily_unavailable")
        credential.set_access_token("stale").set_refresh_token("rt").set_expires_in_seconds(30)

        request = resource_request()
        credential.intercept(request)

        assert request.headers["Authorization"] == "Bearer stale"
        assert credential.access_token == "stale"
        assert len(listener.errors) == 1
        assert listener.errors[0] is not None
        assert listener.errors[0].error == "temporarily_unavailable"

    def test_transport_error_keeps_stale_token(self, clock, listener):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with httpx.Client(transport=httpx.MockTransport(handler)) as client:
            credential = Credential(
                authorization_header_access_method(),
                http_client=client,
                token_server_url=TOKEN_URL,
                client_authentication=ClientParametersAuthentication("id"),
                clock=clock,
                refresh_listeners=[listener],
            )
            credential.set_access_token("stale").set_refresh_token("rt").set_expires_in_seconds(30)
            assert credential.refresh() is False

        assert credential.access_token == "stale"
        assert listener.errors == [None]

    def test_client_error_invalidates_and_raises(self, credential, token_endpoint, listener):
        token_endpoint.respond_json(400, error="invalid_grant")
        credential.set_access_token("stale").set_refresh_token("rt").set_expires_in_seconds(30)

        with pytest.raises(TokenResponseException) as exc_info:
            credential.intercept(resource_request())

        assert exc_info.value.status_code == 400
        assert credential.access_token is None
        assert credential.expiration_time_milliseconds is None
        assert credential.refresh_token == "rt"
        assert [e.error for e in listener.errors if e is not None] == ["invalid_grant"]

    def test_unparsable_client_error_raises_without_clearing(self, credential, token_endpoint, listener):
        token_endpoint.respond(httpx.Response(400, text="bad request"))
        credential.set_access_token("stale").set_refresh_token("rt").set_expires_in_seconds(30)

        with pytest.raises(TokenResponseException):
            credential.refresh()

        assert credential.access_token == "stale"
        assert listener.errors == [None]

    def test_refresh_without_refresh_token(self, credential, token_endpoint, listener):
        credential.set_access_token("a")
        assert credential.refresh() is False
        assert token_endpoint.call_count == 0
        assert listener.responses == [] and listener.errors == []

    def test_listener_errors_propagate(self, token_client, token_endpoint, clock):
        class FailingListener(RecordingListener):
            def on_token_response(self, credential, token_response):
                raise OSError("disk full")

        token_endpoint.respond_json(access_token="fresh", expires_in=3600)
        credential = Credential(
            authorization_header_access_method(),
            http_client=token_client,
            token_server_url=TOKEN_URL,
            client_authentication=ClientParametersAuthentication("id"),
            clock=clock,
            refresh_listeners=[FailingListener()],
        )
        credential.set_refresh_token("rt")
        with pytest.raises(OSError, match="disk full"):
            credential.refresh()

    def test_concurrent_expiry_refreshes_once(self, credential, token_endpoint, clock):
        def slow_token(request: httpx.Request) -> httpx.Response:
            time.sleep(0.05)
            return httpx.Response(200, json={"access_token": "fresh", "expires_in": 3600})

        token_endpoint.respond(slow_token)
        credential.set_access_token("stale").set_refresh_token("rt").set_expires_in_seconds(10)

        requests = [resource_request() for _ in range(8)]
        barrier = threading.Barrier(len(requests))

        def worker(request: httpx.Request) -> None:
            barrier.wait()
            credential.intercept(request)

        threads = [threading.Thread(target=worker, args=(r,)) for r in requests]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert token_endpoint.call_count == 1
        assert {r.headers["Authorization"] for r in requests} == {"Bearer fresh"}


def unauthorized(*challenges: str, status_code: int = 401) -> httpx.Response:
    return httpx.Response(status_code, headers=[("WWW-Authenticate", c) for c in challenges])


class TestHandleResponse:
    @pytest.fixture
    def sent_request(self, credential):
        credential.set_access_token("old").set_refresh_token("rt").set_expires_in_seconds(3600)
        request = resource_request()
        credential.intercept(request)
        return request

    @pytest.mark.parametrize(
        "response, refreshes",
        [
            (unauthorized('Bearer realm="x", error="invalid_token"'), True),
            (unauthorized('Bearer realm="x", error="insufficient_scope"'), False),
            (unauthorized('Bearer realm="x", error="insufficient_scope"', status_code=403), False),
            (unauthorized('Bearer error="invalid_token"', status_code=403), True),
            (unauthorized('Basic realm="x"'), True),
            (unauthorized(), True),
            (unauthorized(status_code=403), False),
            (httpx.Response(500), False),
        ],
    )
    def test_www_authenticate_policy(self, credential, token_endpoint, sent_request, response, refreshes):
        token_endpoint.respond_json(access_token="new", expires_in=3600)

        assert credential.handle_response(sent_request, response) is refreshes
        assert token_endpoint.call_count == (1 if refreshes else 0)
        assert credential.access_token == ("new" if refreshes else "old")

    def test_token_changed_by_another_thread(self, credential, token_endpoint, sent_request):
        credential.set_access_token("replaced")
        assert credential.handle_response(sent_request, unauthorized()) is True
        assert token_endpoint.call_count == 0

    def test_failed_refresh_is_not_retried(self, credential, token_endpoint, sent_request, listener):
        token_endpoint.respond_json(400, error="invalid_grant")
        assert credential.handle_response(sent_request, unauthorized()) is False
        assert credential.access_token is None
        assert len(listener.errors) == 1

    def test_unavailable_token_server_is_not_retried(self, credential, token_endpoint, sent_request):
        token_endpoint.respond(httpx.Response(500))
        assert credential.handle_response(sent_request, unauthorized()) is False
        assert credential.access_token == "old"


class TestAuthFlow:
    def test_sync_retry_after_401(self, credential, token_endpoint):
        token_endpoint.respond_json(access_token="new", expires_in=3600)
        credential.set_access_token("old").set_refresh_token("rt").set_expires_in_seconds(3600)
        seen: list[str] = []

        def resource(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["Authorization"])
            if request.headers["Authorization"] == "Bearer new":
                return httpx.Response(200, json={"ok": True})
            return unauthorized('Bearer error="invalid_token"')

        with httpx.Client(transport=httpx.MockTransport(resource)) as client:
            response = client.get(RESOURCE_URL, auth=credential)

        assert response.status_code == 200
        assert seen == ["Bearer old", "Bearer new"]

    def test_sync_single_retry(self, credential, token_endpoint):
        token_endpoint.respond_json(access_token="new", expires_in=3600)
        credential.set_access_token("old").set_refresh_token("rt").set_expires_in_seconds(3600)
        calls = []

        def resource(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return unauthorized()

        with httpx.Client(transport=httpx.MockTransport(resource)) as client:
            response = client.get(RESOURCE_URL, auth=credential)

        assert response.status_code == 401
        assert len(calls) == 2

    def test_query_parameter_access_method(self, clock):
        credential = Credential(query_parameter_access_method(), clock=clock).set_access_token("abc")

        def resource(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=request.url.params["access_token"])

        with httpx.Client(transport=httpx.MockTransport(resource)) as client:
            assert client.get(RESOURCE_URL, auth=credential).text == "abc"

    @pytest.mark.anyio
    async def test_async_refresh_and_retry(self, credential, token_endpoint, clock):
        token_endpoint.respond_json(access_token="refreshed", expires_in=3600)
        credential.set_access_token("expired").set_refresh_token("rt").set_expires_in_seconds(0)

        async def resource(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=request.headers["Authorization"])

        async with httpx.AsyncClient(transport=httpx.MockTransport(resource)) as client:
            response = await client.get(RESOURCE_URL, auth=credential)

        assert response.text == "Bearer refreshed"
        assert token_endpoint.call_count == 1
