import dataclasses
import os
from pathlib import Path
from typing import Mapping, Optional

import boto3
from botocore.config import Config as BotoConfig
from mypy_boto3_s3.client import S3Client

from blobcdn.errors import ConfigError

DEFAULT_REGION = 'us-east-1'
DEFAULT_ENV = 'production'
DEFAULT_QUALITY = 80
MIN_QUALITY = 1
MAX_QUALITY = 100
DEFAULT_CHUNK_SIZE = 64 * 1024
# Largest width or height a resize may produce.
DEFAULT_MAX_DIMENSION = 4096
DEFAULT_HOST = '0.0.0.0'
DEFAULT_PORT = 8000

# TLS verification against the store is turned off in these environments.
INSECURE_ENVS = ['development', 'test']

ca_bundle_paths = [
    '/etc/ssl/certs/ca-certificates.crt',  # Debian/Ubuntu
    '/etc/pki/tls/certs/ca-bundle.crt',  # RHEL/CentOS
    '/etc/ssl/ca-bundle.pem',  # OpenSUSE
    '/etc/ssl/cert.pem',  # macOS/Alpine
]


def find_ca_bundle(paths: list[str] = ca_bundle_paths) -> Optional[str]:
  for path in paths:
    if Path(path).is_file():
      return path
  return None


def get_str_or(environ: Mapping[str, str], name: str, default: Optional[str]) -> Optional[str]:
  value = environ.get(name, '')
  return default if value == '' else value


def get_int_or(environ: Mapping[str, str], name: str, default: int) -> int:
  value = environ.get(name, '')
  if value == '':
    return default
  try:
    return int(value)
  except ValueError:
    raise ConfigError(f'invalid "{name}": {value}')


@dataclasses.dataclass(eq=True, frozen=True)
class Config:
  """Process-wide settings, built once at startup and never mutated."""

  bucket: str
  region: str = DEFAULT_REGION
  endpoint_url: Optional[str] = None
  access_key_id: Optional[str] = None
  secret_access_key: Optional[str] = None
  env: str = DEFAULT_ENV
  ca_bundle: Optional[str] = None
  default_quality: int = DEFAULT_QUALITY
  chunk_size: int = DEFAULT_CHUNK_SIZE
  max_dimension: int = DEFAULT_MAX_DIMENSION
  log_level: str = 'DEBUG'
  host: str = DEFAULT_HOST
  port: int = DEFAULT_PORT

  def __post_init__(self) -> None:
    if self.bucket == '':
      raise ConfigError('bucket must not be empty')
    if not MIN_QUALITY <= self.default_quality <= MAX_QUALITY:
      raise ConfigError(
          f'default quality must be within {MIN_QUALITY}..{MAX_QUALITY}: {self.default_quality}')
    if self.chunk_size <= 0:
      raise ConfigError(f'chunk size must be positive: {self.chunk_size}')
    if self.max_dimension <= 0:
      raise ConfigError(f'max dimension must be positive: {self.max_dimension}')

  @classmethod
  def from_env(cls, environ: Mapping[str, str] = os.environ) -> 'Config':
    try:
      bucket = environ['CDN_S3_BUCKET']
    except KeyError as e:
      raise ConfigError(f'environment variable not found: {e}')

    return cls(
        bucket=bucket,
        region=get_str_or(environ, 'CDN_S3_REGION', DEFAULT_REGION) or DEFAULT_REGION,
        endpoint_url=get_str_or(environ, 'CDN_S3_ENDPOINT', None),
        access_key_id=get_str_or(environ, 'CDN_S3_ACCESS_KEY_ID', None),
        secret_access_key=get_str_or(environ, 'CDN_S3_SECRET_ACCESS_KEY', None),
        env=get_str_or(environ, 'CDN_ENV', DEFAULT_ENV) or DEFAULT_ENV,
        ca_bundle=get_str_or(environ, 'CDN_SSL_CA_BUNDLE', None) or find_ca_bundle(),
        default_quality=get_int_or(environ, 'CDN_DEFAULT_QUALITY', DEFAULT_QUALITY),
        chunk_size=get_int_or(environ, 'CDN_CHUNK_SIZE', DEFAULT_CHUNK_SIZE),
        max_dimension=get_int_or(environ, 'CDN_MAX_DIMENSION', DEFAULT_MAX_DIMENSION),
        log_level=get_str_or(environ, 'CDN_LOG_LEVEL', 'DEBUG') or 'DEBUG',
        host=get_str_or(environ, 'CDN_HOST', DEFAULT_HOST) or DEFAULT_HOST,
        port=get_int_or(environ, 'CDN_PORT', DEFAULT_PORT))

  @property
  def ssl_verify(self) -> bool | str:
    if self.env in INSECURE_ENVS:
      return False
    if self.ca_bundle is None:
      return True
    return self.ca_bundle

  def s3_client(self) -> S3Client:
    return boto3.client(
        's3',
        region_name=self.region,
        endpoint_url=self.endpoint_url,
        aws_access_key_id=self.access_key_id,
        aws_secret_access_key=self.secret_access_key,
        verify=self.ssl_verify,
        config=BotoConfig(s3={'addressing_style': 'path'}))
