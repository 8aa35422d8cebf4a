from enum import Enum
from typing import Self

from galleryimg import config
from galleryimg.originrequest.directive import RequestedFormat


class OutputFormat(Enum):
  AVIF = 'avif'
  WEBP = 'webp'
  JPEG = 'jpeg'
  PNG = 'png'

  @property
  def mime(self) -> str:
    return f'image/{self.value}'

  def extension(self) -> str:
    return f'.{self.value}'


FORMAT_PREFERENCE: list[OutputFormat] = [OutputFormat(f) for f in config.FORMAT_PREFERENCE]
BASELINE_FORMAT = OutputFormat(config.BASELINE_FORMAT)


class AcceptHeader:
  types: frozenset[str]

  def __init__(self, types: frozenset[str]):
    self.types = types

  @classmethod
  def from_str(cls, accept_header: str) -> Self:
    types = set()

    for media_range in accept_header.split(','):
      media_type, _, params = media_range.partition(';')
      media_type = media_type.strip().lower()
      if media_type == '':
        continue

      # 'q=0' explicitly refuses the type.
      if any(p.strip().replace(' ', '') in ['q=0', 'q=0.0', 'q=0.00', 'q=0.000']
             for p in params.split(';')):
        continue

      types.add(media_type)

    return cls(frozenset(types))

  def supports(self, fmt: OutputFormat) -> bool:
    return fmt.mime in self.types


def negotiate_format(requested: RequestedFormat, accept: AcceptHeader) -> OutputFormat:
  if requested != RequestedFormat.AUTO:
    return OutputFormat(requested.value)

  for fmt in FORMAT_PREFERENCE:
    if accept.supports(fmt):
      return fmt

  return BASELINE_FORMAT
