import datetime
import io
import logging
from logging import Logger
from typing import Callable, Generator, Optional

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import Stubber
from dateutil import tz
from mypy_boto3_s3.client import S3Client
from pyvips import Image  # type: ignore

BUCKET = 'test-bucket'
REGION = 'us-east-1'
ETAG = '"9a0364b9e99bb480dd25e1f0284c8555"'
LAST_MODIFIED = datetime.datetime(2024, 1, 2, 3, 4, 5, tzinfo=tz.tzutc())
LAST_MODIFIED_HTTP = 'Tue, 02 Jan 2024 03:04:05 GMT'

AddObject = Callable[..., StreamingBody]


class RecordingHandler(logging.Handler):

  def __init__(self) -> None:
    super().__init__(logging.DEBUG)
    self.records: list[logging.LogRecord] = []

  def emit(self, record: logging.LogRecord) -> None:
    self.records.append(record)

  def messages(self, level: int) -> list[str]:
    return [r.msg['message'] for r in self.records if r.levelno == level and isinstance(r.msg, dict)]


def streaming_body(data: bytes, content_length: Optional[int] = None) -> StreamingBody:
  return StreamingBody(io.BytesIO(data), len(data) if content_length is None else content_length)


def is_closed(body: StreamingBody) -> bool:
  return body._raw_stream.closed


def make_image(width: int, height: int, suffix: str = '.png') -> bytes:
  image = (Image.black(width, height) + [40, 80, 120]).cast('uchar').copy(interpretation='srgb')
  return image.write_to_buffer(suffix)


@pytest.fixture
def recorder() -> RecordingHandler:
  return RecordingHandler()


@pytest.fixture
def logger(request: pytest.FixtureRequest, recorder: RecordingHandler) -> Logger:
  log = logging.getLogger(f'blobcdn.test.{request.node.name}')
  log.setLevel(logging.DEBUG)
  log.handlers = [recorder]
  log.propagate = False
  return log


@pytest.fixture
def s3() -> S3Client:
  return boto3.client(
      's3',
      region_name=REGION,
      aws_access_key_id='testing',
      aws_secret_access_key='testing')


@pytest.fixture
def stubber(s3: S3Client) -> Generator[Stubber, None, None]:
  with Stubber(s3) as st:
    yield st


@pytest.fixture
def add_object(stubber: Stubber) -> AddObject:

  def fn(
      key: str,
      data: bytes,
      content_type: Optional[str],
      body: Optional[StreamingBody] = None,
  ) -> StreamingBody:
    if body is None:
      body = streaming_body(data)

    res = {
        'Body': body,
        'ContentLength': len(data),
        'ETag': ETAG,
        'LastModified': LAST_MODIFIED,
    }
    if content_type is not None:
      res['ContentType'] = content_type

    stubber.add_response('get_object', res, {'Bucket': BUCKET, 'Key': key})
    return body

  return fn


@pytest.fixture
def add_client_error(stubber: Stubber) -> Callable[[str, str, int], None]:

  def fn(key: str, code: str, status: int) -> None:
    stubber.add_client_error(
        'get_object',
        service_error_code=code,
        service_message=code,
        http_status_code=status,
        expected_params={
            'Bucket': BUCKET,
            'Key': key,
        })

  return fn
