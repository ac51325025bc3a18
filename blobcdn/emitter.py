import datetime
from http import HTTPStatus
from logging import Logger
from typing import Any, Optional

from dateutil import tz
from starlette.requests import ClientDisconnect
from starlette.responses import PlainTextResponse, Response, StreamingResponse
from starlette.types import Receive, Scope, Send

from blobcdn.fetcher import FetchedObject
from blobcdn.transform import TransformedObject
from blobcdn.typing import HeaderMap

# The URL, query string included, is the cache key at the edge. The same URL
# always yields the same bytes.
CACHE_CONTROL = 'public, max-age=31536000, immutable'
CONTENT_DISPOSITION = 'inline'
DEFAULT_CONTENT_TYPE = 'application/octet-stream'

NOT_FOUND_BODY = 'File not found'
INTERNAL_ERROR_BODY = 'Internal server error'

cors_headers: HeaderMap = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, HEAD, OPTIONS',
    'Access-Control-Allow-Headers': 'Origin, X-Requested-With, Content-Type, Accept',
}


def http_date(dt: datetime.datetime) -> str:
  return dt.astimezone(tz.tzutc()).strftime('%a, %d %b %Y %H:%M:%S GMT')


def object_headers(obj: FetchedObject, transformed: Optional[TransformedObject]) -> HeaderMap:
  """Headers for a successful response.

  ETag and Last-Modified always describe the stored object. A resized body is
  a pure function of those bytes and the query string, so they stay valid
  validators for it. Stores that return no ETag get no ETag header.
  """
  if transformed is None:
    content_type = obj.content_type or DEFAULT_CONTENT_TYPE
    size = obj.size
  else:
    content_type = transformed.mime_type
    size = len(transformed.body)

  headers: HeaderMap = {
      'Cache-Control': CACHE_CONTROL,
      'Last-Modified': http_date(obj.last_modified),
      'Content-Type': content_type,
      'Content-Disposition': CONTENT_DISPOSITION,
      **cors_headers,
  }

  if obj.etag is not None:
    headers['ETag'] = obj.etag
  if size is not None:
    headers['Content-Length'] = str(size)

  return headers


def preflight_response() -> Response:
  return Response(status_code=HTTPStatus.OK, headers=cors_headers)


def not_found_response() -> Response:
  return PlainTextResponse(NOT_FOUND_BODY, status_code=HTTPStatus.NOT_FOUND, headers=cors_headers)


def internal_error_response() -> Response:
  return PlainTextResponse(
      INTERNAL_ERROR_BODY, status_code=HTTPStatus.INTERNAL_SERVER_ERROR, headers=cors_headers)


def head_response(headers: HeaderMap) -> Response:
  res = Response(status_code=HTTPStatus.OK, headers=headers)
  if 'Content-Length' not in headers:
    del res.headers['content-length']
  return res


def transformed_response(
    obj: FetchedObject,
    transformed: TransformedObject,
    head: bool,
) -> Response:
  headers = object_headers(obj, transformed)
  if head:
    return head_response(headers)
  return Response(content=transformed.body, status_code=HTTPStatus.OK, headers=headers)


class ObjectStreamResponse(StreamingResponse):
  """Copies a stored object to the client without buffering it.

  The response owns the object from construction on and closes it once the
  response is over, however it ends.
  """

  def __init__(
      self,
      log: Logger,
      obj: FetchedObject,
      chunk_size: int,
      log_context: dict[str, Any],
  ):
    super().__init__(
        obj.iter_chunks(chunk_size),
        status_code=HTTPStatus.OK,
        headers=object_headers(obj, None))
    self.log = log
    self.obj = obj
    self.log_context = log_context

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    try:
      await super().__call__(scope, receive, send)
    except (ClientDisconnect, OSError) as e:
      self.log.debug({
          'message': 'client aborted',
          **self.log_context,
          'reason': str(e),
      })
    except Exception as e:
      # Headers are already out; the server drops the connection.
      self.log.error({
          'message': 'error while streaming',
          **self.log_context,
          'reason': f'{e.__class__.__name__}: {e}',
      })
      raise
    finally:
      self.obj.close()
