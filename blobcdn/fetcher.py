import dataclasses
import datetime
from typing import Iterator, Optional

from botocore.exceptions import BotoCoreError, ClientError
from botocore.response import StreamingBody
from mypy_boto3_s3.client import S3Client
from mypy_boto3_s3.type_defs import GetObjectOutputTypeDef

from blobcdn.errors import NotFound, StoreUnavailable
from blobcdn.typing import S3Key


def is_not_found_client_error(exception: ClientError) -> bool:
  if 'Error' not in exception.response:
    return False
  if 'Code' not in exception.response['Error']:
    return False
  return exception.response['Error']['Code'] in ['404', 'NoSuchKey']


@dataclasses.dataclass(frozen=True)
class FetchedObject:
  """An object as returned by the store, with its body still unread.

  The body can be consumed once, either chunk by chunk (passthrough) or as a
  whole (transform). Whoever holds the object must call close() when done.
  """

  key: S3Key
  content_type: Optional[str]
  etag: Optional[str]
  last_modified: datetime.datetime
  size: Optional[int]
  body: StreamingBody

  @classmethod
  def from_get_object(cls, key: S3Key, res: GetObjectOutputTypeDef) -> 'FetchedObject':
    try:
      body = res['Body']
    except KeyError:
      raise StoreUnavailable(f'no body for "{key}"')

    try:
      last_modified = res['LastModified']
    except KeyError:
      body.close()
      raise StoreUnavailable(f'no last modified time for "{key}"')

    return cls(
        key=key,
        content_type=res.get('ContentType'),
        etag=res.get('ETag'),
        last_modified=last_modified,
        size=res.get('ContentLength'),
        body=body)

  def iter_chunks(self, chunk_size: int) -> Iterator[bytes]:
    try:
      yield from self.body.iter_chunks(chunk_size)
    except BotoCoreError as e:
      raise StoreUnavailable(f'failed to read "{self.key}": {e}') from e

  def read(self) -> bytes:
    try:
      return self.body.read()
    except BotoCoreError as e:
      raise StoreUnavailable(f'failed to read "{self.key}": {e}') from e

  def close(self) -> None:
    self.body.close()


class ObjectFetcher:

  def __init__(self, s3: S3Client, bucket: str):
    self.s3 = s3
    self.bucket = bucket

  def fetch(self, key: S3Key) -> FetchedObject:
    if key == '':
      raise NotFound('empty key')

    try:
      res = self.s3.get_object(Bucket=self.bucket, Key=key)
    except ClientError as e:
      if is_not_found_client_error(e):
        raise NotFound(key) from e
      raise StoreUnavailable(f'failed to get "{key}": {e}') from e
    except BotoCoreError as e:
      raise StoreUnavailable(f'failed to get "{key}": {e}') from e

    return FetchedObject.from_get_object(key, res)
