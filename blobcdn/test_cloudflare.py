from logging import Logger

import pytest
from starlette.applications import Starlette
from starlette.datastructures import Headers
from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from .cloudflare import CloudflareSchemeMiddleware, is_forwarded_https


async def scheme(request: Request) -> PlainTextResponse:
  return PlainTextResponse(request.url.scheme)


@pytest.fixture
def client(logger: Logger) -> TestClient:
  app = Starlette(routes=[Route('/', scheme)])
  app.add_middleware(CloudflareSchemeMiddleware, log=logger)
  return TestClient(app)


@pytest.mark.parametrize(
    'headers,expected', [
        ({}, False),
        ({'X-Forwarded-Proto': 'https'}, True),
        ({'X-Forwarded-Proto': 'http'}, False),
        ({'CF-Visitor': '{"scheme":"https"}'}, True),
        ({'CF-Visitor': '{"scheme":"http"}'}, False),
    ])
def test_is_forwarded_https(headers: dict[str, str], expected: bool) -> None:
  assert is_forwarded_https(Headers(headers=headers)) == expected


@pytest.mark.parametrize(
    'headers,expected', [
        ({}, 'http'),
        ({'X-Forwarded-Proto': 'https'}, 'https'),
        ({'CF-Visitor': '{"scheme":"https"}'}, 'https'),
    ])
def test_scheme(client: TestClient, headers: dict[str, str], expected: str) -> None:
  assert client.get('/', headers=headers).text == expected
