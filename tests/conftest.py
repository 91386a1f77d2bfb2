import threading
from collections.abc import Callable

import httpx
import pytest

from credflow.shared.clock import FixedClock


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock():
    return FixedClock(1_700_000_000_000)


class TokenEndpoint:
    """Scripted token endpoint: pops one queued response per request and records what it got."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responses: list[Callable[[httpx.Request], httpx.Response]] = []
        self._lock = threading.Lock()

    def respond_json(self, status_code: int = 200, **body) -> "TokenEndpoint":
        self.responses.append(lambda request: httpx.Response(status_code, json=body))
        return self

    def respond(self, response: httpx.Response | Callable[[httpx.Request], httpx.Response]) -> "TokenEndpoint":
        if isinstance(response, httpx.Response):
            template = response
            self.responses.append(
                lambda request: httpx.Response(template.status_code, headers=template.headers, content=template.content)
            )
        else:
            self.responses.append(response)
        return self

    def form(self, index: int = -1) -> dict[str, str]:
        return dict(httpx.QueryParams(self.requests[index].content.decode()))

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
            if not self.responses:
                return httpx.Response(500, text="no response queued")
            # the last queued response answers every further request
            factory = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return factory(request)


@pytest.fixture
def token_endpoint():
    return TokenEndpoint()


@pytest.fixture
def token_client(token_endpoint):
    with httpx.Client(transport=httpx.MockTransport(token_endpoint)) as client:
        yield client

