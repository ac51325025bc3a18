from logging import Logger

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send


def is_forwarded_https(headers: Headers) -> bool:
  if headers.get('x-forwarded-proto') == 'https':
    return True
  return '"scheme":"https"' in headers.get('cf-visitor', '')


class CloudflareSchemeMiddleware:
  """Treats requests that reached Cloudflare over TLS as https.

  Cloudflare terminates TLS and talks plain HTTP to the origin, so without
  this the app would see every request as http.
  """

  def __init__(self, app: ASGIApp, log: Logger):
    self.app = app
    self.log = log

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope['type'] != 'http':
      await self.app(scope, receive, send)
      return

    headers = Headers(scope=scope)
    if is_forwarded_https(headers):
      scope = {**scope, 'scheme': 'https'}

    self.log.debug({
        'message': 'cdn request',
        'method': scope['method'],
        'path': scope['path'],
        'qstr': scope.get('query_string', b'').decode('latin-1'),
        'host': headers.get('host', ''),
        'scheme': scope.get('scheme', 'http'),
    })

    await self.app(scope, receive, send)
