"""Decide whether an object is resized, and resize it.

Resizing needs the complete image: libvips cannot shrink a JPEG or a PNG
without random access to the encoded data. The transform path therefore reads
the whole object into memory, which is the one place where the response
pipeline stops streaming. Objects that are not resized never take this path.
"""
import dataclasses
from enum import Enum
from typing import Mapping, Optional

import pyvips
from pyvips import Image  # type: ignore

from blobcdn.config import (
    DEFAULT_MAX_DIMENSION,
    DEFAULT_QUALITY,
    MAX_QUALITY,
    MIN_QUALITY
)
from blobcdn.errors import DecodeError, EncodeError

# Loaders that can hold more than one frame.
multi_page_loaders = ['gifload_buffer', 'webpload_buffer']


class Decision(Enum):
  PASSTHROUGH = 0
  TRANSFORM = 1


def parse_dimension(values: Optional[list[str]], max_dimension: int) -> Optional[int]:
  if not values:
    return None
  try:
    n = int(values[0])
  except ValueError:
    return None
  return min(n, max_dimension) if 0 < n else None


def clamp_quality(quality: int) -> int:
  return max(MIN_QUALITY, min(MAX_QUALITY, quality))


def parse_quality(values: Optional[list[str]], default: int) -> int:
  if not values:
    return default
  try:
    return clamp_quality(int(values[0]))
  except ValueError:
    return default


@dataclasses.dataclass(eq=True, frozen=True)
class TransformRequest:
  width: Optional[int] = None
  height: Optional[int] = None
  quality: int = DEFAULT_QUALITY

  @classmethod
  def from_querystring(
      cls,
      qs: Mapping[str, list[str]],
      default_quality: int = DEFAULT_QUALITY,
      max_dimension: int = DEFAULT_MAX_DIMENSION,
  ) -> 'TransformRequest':
    return cls(
        width=parse_dimension(qs.get('w'), max_dimension),
        height=parse_dimension(qs.get('h'), max_dimension),
        quality=parse_quality(qs.get('q'), default_quality))

  @property
  def has_dimension(self) -> bool:
    return self.width is not None or self.height is not None


def decide(content_type: Optional[str], req: TransformRequest) -> Decision:
  # Quality on its own never triggers a resize.
  if content_type is None or not content_type.startswith('image/'):
    return Decision.PASSTHROUGH
  if not req.has_dimension:
    return Decision.PASSTHROUGH
  return Decision.TRANSFORM


@dataclasses.dataclass(frozen=True)
class OutputFormat:
  suffix: str
  mime_type: str
  lossy: bool


PNG_FORMAT = OutputFormat('.png', 'image/png', False)

# Keyed by the 'vips-loader' of the decoded image. Anything else libvips can
# read is written back as PNG.
loader_formats = {
    'jpegload_buffer': OutputFormat('.jpg', 'image/jpeg', True),
    'pngload_buffer': PNG_FORMAT,
    'webpload_buffer': OutputFormat('.webp', 'image/webp', True),
    'gifload_buffer': OutputFormat('.gif', 'image/gif', False),
    'heifload_buffer': OutputFormat('.avif', 'image/avif', True),
}


def output_format(loader: str) -> OutputFormat:
  return loader_formats.get(loader, PNG_FORMAT)


@dataclasses.dataclass(frozen=True)
class TransformedObject:
  mime_type: str
  body: bytes
  width: int
  # Height of a single frame for animated images.
  height: int


def page_height(image: Image) -> int:
  if image.get_typeof('page-height') != 0:
    return image.get('page-height')
  return image.get('height')


class Transformer:

  def __init__(self, max_dimension: int = DEFAULT_MAX_DIMENSION):
    self.max_dimension = max_dimension

  def cap(self, n: Optional[int]) -> Optional[int]:
    return None if n is None else min(n, self.max_dimension)

  def thumbnail(self, data: bytes, loader: str, req: TransformRequest) -> Image:
    # Every frame of an animation is resized, not just the first one.
    option_string = 'n=-1' if loader in multi_page_loaders else ''

    # 'WxH' fits inside the box, 'Wx' and 'xH' leave the other axis free up to
    # the maximum dimension.
    match (self.cap(req.width), self.cap(req.height)):
      case (int() as width, int() as height):
        pass
      case (int() as width, None):
        height = self.max_dimension
      case (None, int() as height):
        width = self.max_dimension
      case _:
        raise ValueError(f'no dimension requested: {req}')

    return Image.thumbnail_buffer(
        data, width, height=height, no_rotate=True, option_string=option_string)

  def transform(self, data: bytes, req: TransformRequest) -> TransformedObject:
    try:
      loader: str = Image.new_from_buffer(data, '').get('vips-loader')
      # Decoding is lazy; render now so that broken pixel data surfaces here
      # rather than while encoding.
      image: Image = self.thumbnail(data, loader, req).copy_memory()
    except pyvips.Error as e:
      raise DecodeError(str(e)) from e

    fmt = output_format(loader)

    try:
      if fmt.lossy:
        resized: bytes = image.write_to_buffer(fmt.suffix, Q=req.quality)
      else:
        resized = image.write_to_buffer(fmt.suffix)
    except pyvips.Error as e:
      raise EncodeError(str(e)) from e

    return TransformedObject(
        mime_type=fmt.mime_type,
        body=resized,
        width=image.get('width'),
        height=page_height(image))
