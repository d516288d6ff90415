"""
Shared fixtures for the DualGuard client tests.

Requests never leave the process: ``FakeBackend`` replaces the API client's
transport and answers from scripted responses.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from unittest.mock import patch

import pytest
from yarl import URL

from dualguard.client.api_client import DualGuardAPIClient, RawResponse
from dualguard.client.auth.token_storage import MemoryCredentialStore
from dualguard.shared.events import EventBus, AUTH_SIGNOUT, API_ERROR

BASE_URL = "http://api.dualguard.test"


def json_response(status: int = 200, body: Any = None) -> RawResponse:
    return RawResponse(
        status=status,
        text=json.dumps(body) if body is not None else '',
        content_type='application/json; charset=utf-8'
    )


def text_response(status: int, text: str, content_type: str = 'text/plain') -> RawResponse:
    return RawResponse(status=status, text=text, content_type=content_type)


@dataclass
class Call:
    method: str
    path: str
    headers: Dict[str, str]
    body: Any = None
    params: Optional[Dict[str, str]] = None


class FakeBackend:
    """
    Stand-in for ``DualGuardAPIClient._transmit``.

    Responses are queued per (method, path); the last one queued for a route
    keeps answering once the others are used up. A queued exception is raised
    and a queued coroutine function is awaited for its response.
    """

    def __init__(self):
        self.routes: Dict[tuple, List[Any]] = {}
        self.calls: List[Call] = []

    def add(self, method: str, path: str, *responses: Any) -> 'FakeBackend':
        self.routes.setdefault((method.upper(), path), []).extend(responses)
        return self

    def count(self, method: str, path: str) -> int:
        return len([call for call in self.calls if call.method == method.upper() and call.path == path])

    def last(self, method: str, path: str) -> Call:
        return [call for call in self.calls if call.method == method.upper() and call.path == path][-1]

    async def __call__(self, method, url, headers, data, params):
        path = URL(url).path
        self.calls.append(Call(
            method=method,
            path=path,
            headers=dict(headers),
            body=json.loads(data) if data is not None else None,
            params=params
        ))

        queue = self.routes.get((method, path))
        if not queue:
            raise AssertionError(f"Unexpected request {method} {path}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]

        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return await item()
        return item


@dataclass
class SignalRecorder:
    signouts: List[Any] = field(default_factory=list)
    errors: List[Any] = field(default_factory=list)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def signals(events):
    recorder = SignalRecorder()
    events.subscribe(AUTH_SIGNOUT, recorder.signouts.append)
    events.subscribe(API_ERROR, recorder.errors.append)
    return recorder


@pytest.fixture
def store():
    return MemoryCredentialStore()


@pytest.fixture
def client(store, events, backend):
    api_client = DualGuardAPIClient(BASE_URL, store, events=events)
    with patch.object(api_client, '_transmit', new=backend):
        yield api_client
