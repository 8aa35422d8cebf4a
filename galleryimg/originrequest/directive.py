import dataclasses
import math
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Self

from galleryimg import config


class RequestedFormat(Enum):
  AUTO = 'auto'
  WEBP = 'webp'
  AVIF = 'avif'
  JPEG = 'jpeg'
  PNG = 'png'


class Fit(Enum):
  SCALE_DOWN = 'scale-down'
  CONTAIN = 'contain'
  COVER = 'cover'
  CROP = 'crop'
  PAD = 'pad'


class Gravity(Enum):
  AUTO = 'auto'
  SIDE = 'side'
  CENTER = 'center'
  LEFT = 'left'
  RIGHT = 'right'
  TOP = 'top'
  BOTTOM = 'bottom'


ALIASES = {
    'w': 'width',
    'h': 'height',
    'q': 'quality',
    'f': 'format',
    'g': 'gravity',
    'bg': 'background',
}


def parse_int(value: str) -> Optional[int]:
  try:
    return int(value)
  except ValueError:
    return None


def parse_positive_int(value: str) -> Optional[int]:
  n = parse_int(value)
  if n is None or n <= 0:
    return None
  return n


def parse_quality(value: str) -> Optional[int]:
  n = parse_int(value)
  if n is None or not config.MIN_QUALITY <= n <= config.MAX_QUALITY:
    return None
  return n


def parse_float(value: str) -> Optional[float]:
  try:
    f = float(value)
  except ValueError:
    return None
  if not math.isfinite(f):
    return None
  return f


def enum_parser(cls: type[Enum]) -> Callable[[str], Optional[Enum]]:

  def parse(value: str) -> Optional[Enum]:
    try:
      return cls(value.lower())
    except ValueError:
      return None

  return parse


def parse_background(value: str) -> Optional[str]:
  return value if value != '' else None


PARSERS: dict[str, Callable[[str], Any]] = {
    'width': parse_positive_int,
    'height': parse_positive_int,
    'quality': parse_quality,
    'format': enum_parser(RequestedFormat),
    'fit': enum_parser(Fit),
    'gravity': enum_parser(Gravity),
    'background': parse_background,
    'blur': parse_int,
    'brightness': parse_float,
    'contrast': parse_float,
    'gamma': parse_float,
    'sharpen': parse_float,
}


def parse_field(key: str, value: str) -> Optional[tuple[str, Any]]:
  name = ALIASES.get(key, key)
  parser = PARSERS.get(name)
  if parser is None:
    return None

  parsed = parser(value)
  if parsed is None:
    return None

  return (name, parsed)


def split_options(option_string: str) -> list[str]:
  # Commas inside parentheses belong to the value, as in bg=rgb(0,0,0).
  pairs: list[str] = []
  depth = 0
  start = 0
  for i, c in enumerate(option_string):
    if c == '(':
      depth += 1
    elif c == ')' and 0 < depth:
      depth -= 1
    elif c == ',' and depth == 0:
      pairs.append(option_string[start:i])
      start = i + 1
  pairs.append(option_string[start:])
  return pairs


def parse_options(option_string: str) -> dict[str, Any]:
  fields: dict[str, Any] = {}

  for pair in split_options(option_string):
    key, sep, value = pair.partition('=')
    key = key.strip()
    value = value.strip()
    if sep == '' or key == '' or value == '':
      continue

    field = parse_field(key, value)
    if field is not None:
      fields[field[0]] = field[1]

  return fields


def parse_query(qs: Mapping[str, list[str]]) -> dict[str, Any]:
  fields: dict[str, Any] = {}

  for key, values in qs.items():
    if len(values) == 0:
      continue

    field = parse_field(key, values[0].strip())
    if field is not None:
      fields[field[0]] = field[1]

  return fields


@dataclasses.dataclass(eq=True, frozen=True)
class TransformDirective:
  width: Optional[int] = None
  height: Optional[int] = None
  quality: int = config.DEFAULT_QUALITY
  format: RequestedFormat = RequestedFormat(config.DEFAULT_FORMAT)
  fit: Fit = Fit(config.DEFAULT_FIT)
  gravity: Optional[Gravity] = None
  background: Optional[str] = None
  blur: Optional[int] = None
  brightness: Optional[float] = None
  contrast: Optional[float] = None
  gamma: Optional[float] = None
  sharpen: Optional[float] = None

  def with_width(self, width: int) -> Self:
    return dataclasses.replace(self, width=width)

  def with_auto_width(self, user_agent: str) -> Self:
    if self.width is not None:
      return self
    return self.with_width(resolve_responsive_width(user_agent))

  def to_dict(self) -> dict[str, Any]:
    d: dict[str, Any] = {}
    for f in dataclasses.fields(self):
      v = getattr(self, f.name)
      if v is None:
        continue
      d[f.name] = v.value if isinstance(v, Enum) else v
    return d

  def to_options(self) -> str:
    return ','.join(f'{k}={v}' for k, v in self.to_dict().items())


def parse_directive(
    option_string: str,
    qs: Optional[Mapping[str, list[str]]] = None,
) -> TransformDirective:
  fields = parse_options(option_string)
  if qs is not None:
    fields.update(parse_query(qs))

  return TransformDirective(**fields)


def wants_auto_width(option_string: str) -> bool:
  return any(pair.strip() == config.AUTO_WIDTH_DIRECTIVE for pair in split_options(option_string))


def resolve_responsive_width(user_agent: str) -> int:
  is_mobile = config.mobile_ua_re.search(user_agent) is not None
  is_tablet = config.tablet_ua_re.search(user_agent) is not None

  # Tablet wins when a signature matches both patterns.
  if is_mobile and not is_tablet:
    return config.MOBILE_WIDTH
  if is_tablet:
    return config.TABLET_WIDTH
  return config.DESKTOP_WIDTH


def resolve_directive(
    option_string: str,
    qs: Optional[Mapping[str, list[str]]],
    user_agent: str,
) -> TransformDirective:
  directive = parse_directive(option_string, qs)
  if wants_auto_width(option_string):
    directive = directive.with_auto_width(user_agent)
  return directive
