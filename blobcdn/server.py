import time
from logging import Logger
from typing import Any, Optional
from urllib import parse

from fastapi import FastAPI, Request
from fastapi.responses import Response
from mypy_boto3_s3.client import S3Client
from starlette.concurrency import run_in_threadpool

from blobcdn.cloudflare import CloudflareSchemeMiddleware
from blobcdn.config import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_DIMENSION,
    DEFAULT_QUALITY,
    Config
)
from blobcdn.emitter import (
    ObjectStreamResponse,
    head_response,
    internal_error_response,
    not_found_response,
    object_headers,
    preflight_response,
    transformed_response
)
from blobcdn.errors import NotFound, StoreUnavailable, TransformError
from blobcdn.fetcher import FetchedObject, ObjectFetcher
from blobcdn.jsonlog import init_logging
from blobcdn.transform import Decision, Transformer, TransformRequest, decide
from blobcdn.typing import QueryString, S3Key

# Logged when present; only w, h and q change the response.
transform_param_names = ['w', 'h', 'q', 'format', 'width', 'height', 'quality']


class CdnServer:

  def __init__(
      self,
      log: Logger,
      fetcher: ObjectFetcher,
      transformer: Transformer,
      default_quality: int = DEFAULT_QUALITY,
      chunk_size: int = DEFAULT_CHUNK_SIZE,
      max_dimension: int = DEFAULT_MAX_DIMENSION,
  ):
    self.log = log
    self.fetcher = fetcher
    self.transformer = transformer
    self.default_quality = default_quality
    self.chunk_size = chunk_size
    self.max_dimension = max_dimension

  @classmethod
  def from_config(
      cls,
      log: Logger,
      config: Config,
      s3: Optional[S3Client] = None,
  ) -> 'CdnServer':
    return cls(
        log=log,
        fetcher=ObjectFetcher(config.s3_client() if s3 is None else s3, config.bucket),
        transformer=Transformer(config.max_dimension),
        default_quality=config.default_quality,
        chunk_size=config.chunk_size,
        max_dimension=config.max_dimension)

  def log_warning(self, message: str, dict: dict[str, Any]) -> None:
    self.log.warning({
        'message': message,
        **dict,
    })

  def log_debug(self, message: str, dict: dict[str, Any]) -> None:
    self.log.debug({
        'message': message,
        **dict,
    })

  def log_error(self, message: str, dict: dict[str, Any]) -> None:
    self.log.error({
        'message': message,
        **dict,
    })

  async def process_transform(
      self,
      obj: FetchedObject,
      req: TransformRequest,
      head: bool,
      log_context: dict[str, Any],
  ) -> Response:
    data = await run_in_threadpool(obj.read)

    start_ns = time.time_ns()
    transformed = await run_in_threadpool(self.transformer.transform, data, req)
    del data
    vips_us = (time.time_ns() - start_ns) // 1000

    self.log_debug(
        'transformed', {
            **log_context,
            'width': transformed.width,
            'height': transformed.height,
            'quality': req.quality,
            'content_type': transformed.mime_type,
            'img_size': len(transformed.body),
            'vips_us': vips_us,
        })

    return transformed_response(obj, transformed, head)

  async def handle(self, method: str, key: S3Key, qs: QueryString) -> Response:
    head = method == 'HEAD'
    log_context: dict[str, Any] = {'method': method, 'key': key}

    if any(name in qs for name in transform_param_names):
      self.log_debug(
          'image transformation params', {
              **log_context,
              'params': {name: qs[name] for name in transform_param_names if name in qs},
          })

    obj: Optional[FetchedObject] = None
    # Set once a streaming response has taken over closing the object.
    handed_off = False

    try:
      obj = await run_in_threadpool(self.fetcher.fetch, key)
      req = TransformRequest.from_querystring(qs, self.default_quality, self.max_dimension)

      match decide(obj.content_type, req):
        case Decision.PASSTHROUGH:
          if head:
            return head_response(object_headers(obj, None))
          res = ObjectStreamResponse(self.log, obj, self.chunk_size, log_context)
          handed_off = True
          return res
        case Decision.TRANSFORM:
          return await self.process_transform(obj, req, head, log_context)
        case _:
          raise Exception('system error')
    except NotFound:
      self.log_warning('object not found', log_context)
      return not_found_response()
    except StoreUnavailable as e:
      self.log_error('store unavailable', {**log_context, 'reason': str(e)})
      return internal_error_response()
    except TransformError as e:
      self.log_error(
          'failed to transform', {
              **log_context,
              'reason': f'{e.__class__.__name__}: {e}',
          })
      return internal_error_response()
    except Exception as e:
      self.log_error(
          'error during handle()', {
              **log_context,
              'reason': f'{e.__class__.__name__}: {e}',
          })
      return internal_error_response()
    finally:
      if obj is not None and not handed_off:
        obj.close()


def create_app(
    config: Config,
    s3: Optional[S3Client] = None,
    log: Optional[Logger] = None,
) -> FastAPI:
  if log is None:
    log = init_logging(config.log_level)

  server = CdnServer.from_config(log, config, s3)

  app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
  app.state.server = server
  app.add_middleware(CloudflareSchemeMiddleware, log=log)

  @app.options('/{path:path}')
  async def preflight(path: str) -> Response:
    return preflight_response()

  @app.api_route('/{path:path}', methods=['GET', 'HEAD'])
  async def show(path: str, request: Request) -> Response:
    return await server.handle(request.method, S3Key(path), parse.parse_qs(request.url.query))

  return app
