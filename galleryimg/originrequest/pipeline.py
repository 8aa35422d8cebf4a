import dataclasses
import re
from typing import Callable, Optional, Tuple

from pyvips import Error, Extend, Image, Interesting  # type: ignore

from galleryimg import config
from galleryimg.originrequest.directive import Fit, Gravity, TransformDirective
from galleryimg.originrequest.negotiation import OutputFormat

hex_color_re = re.compile(r'^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$')
rgb_color_re = re.compile(r'^rgb\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*\)$')

NAMED_COLORS = {
    'white': [255.0, 255.0, 255.0],
    'black': [0.0, 0.0, 0.0],
    'gray': [128.0, 128.0, 128.0],
    'grey': [128.0, 128.0, 128.0],
    'red': [255.0, 0.0, 0.0],
    'green': [0.0, 128.0, 0.0],
    'blue': [0.0, 0.0, 255.0],
}


class TransformError(Exception):
  pass


class InvalidBackground(TransformError):
  pass


@dataclasses.dataclass(frozen=True)
class TransformedImage:
  body: bytes
  content_type: str


def parse_color(s: str) -> list[float]:
  s = s.strip().lower()

  if s in NAMED_COLORS:
    return NAMED_COLORS[s]

  m = hex_color_re.match(s)
  if m is not None:
    digits = m[1]
    if len(digits) == 3:
      digits = ''.join(c * 2 for c in digits)
    return [float(int(digits[i:i + 2], 16)) for i in range(0, 6, 2)]

  m = rgb_color_re.match(s)
  if m is not None:
    rgb = [int(m[1]), int(m[2]), int(m[3])]
    if any(255 < c for c in rgb):
      raise InvalidBackground(f'invalid background: {s}')
    return [float(c) for c in rgb]

  raise InvalidBackground(f'invalid background: {s}')


def max_value(image: Image) -> float:
  match image.format:
    case 'uchar' | 'char':
      return 255.0
    case 'ushort' | 'short':
      return 65535.0
    case _:
      return 1.0


def background_for(image: Image, rgb: list[float]) -> list[float]:
  scale = max_value(image) / 255.0
  colour_bands = image.bands - 1 if image.hasalpha() else image.bands

  if colour_bands < 3:
    colour = [sum(rgb) / 3] * colour_bands
  else:
    colour = rgb + [0.0] * (colour_bands - 3)

  background = [c * scale for c in colour]
  if image.hasalpha():
    background.append(max_value(image))
  return background


def decode(data: bytes) -> Image:
  try:
    return Image.new_from_buffer(data, '').autorot()
  except Error as e:
    raise TransformError(f'failed to decode: {e}') from e


def resize_to(image: Image, width: int, height: int) -> Image:
  if width == image.width and height == image.height:
    return image
  return image.resize(width / image.width, vscale=height / image.height)


def scaled_size(image: Image, scale: float) -> Tuple[int, int]:
  return (max(1, round(image.width * scale)), max(1, round(image.height * scale)))


def gravity_offsets(gravity: Optional[Gravity], spare_x: int, spare_y: int) -> Tuple[int, int]:
  x = spare_x // 2
  y = spare_y // 2

  match gravity:
    case Gravity.LEFT:
      x = 0
    case Gravity.RIGHT:
      x = spare_x
    case Gravity.TOP:
      y = 0
    case Gravity.BOTTOM:
      y = spare_y

  return (x, y)


def crop_image(image: Image, width: int, height: int, gravity: Optional[Gravity]) -> Image:
  width = min(width, image.width)
  height = min(height, image.height)
  if width == image.width and height == image.height:
    return image

  match gravity:
    case Gravity.AUTO:
      return image.smartcrop(width, height, interesting=Interesting.ATTENTION)
    case Gravity.SIDE:
      return image.smartcrop(width, height, interesting=Interesting.ENTROPY)
    case _:
      x, y = gravity_offsets(gravity, image.width - width, image.height - height)
      return image.extract_area(x, y, width, height)


def pad_image(
    image: Image,
    width: int,
    height: int,
    gravity: Optional[Gravity],
    background: Optional[str],
) -> Image:
  rgb = config.PADDING_COLOR if background is None else parse_color(background)
  if width <= image.width and height <= image.height:
    return image

  x, y = gravity_offsets(gravity, max(0, width - image.width), max(0, height - image.height))
  return image.embed(
      x,
      y,
      max(width, image.width),
      max(height, image.height),
      extend=Extend.BACKGROUND,
      background=background_for(image, rgb))


def fit_image(image: Image, directive: TransformDirective) -> Image:
  width = directive.width
  height = directive.height
  if width is None and height is None:
    return image

  hscale = None if width is None else width / image.width
  vscale = None if height is None else height / image.height

  if hscale is None or vscale is None:
    scale = hscale if vscale is None else vscale
    assert scale is not None
    if directive.fit in [Fit.SCALE_DOWN, Fit.CROP]:
      scale = min(scale, 1.0)
    return resize_to(image, *scaled_size(image, scale))

  assert width is not None and height is not None

  match directive.fit:
    case Fit.SCALE_DOWN:
      return resize_to(image, *scaled_size(image, min(hscale, vscale, 1.0)))
    case Fit.CONTAIN:
      return resize_to(image, *scaled_size(image, min(hscale, vscale)))
    case Fit.COVER:
      w, h = scaled_size(image, max(hscale, vscale))
      resized = resize_to(image, max(w, width), max(h, height))
      return crop_image(resized, width, height, directive.gravity)
    case Fit.CROP:
      resized = resize_to(image, *scaled_size(image, min(max(hscale, vscale), 1.0)))
      return crop_image(resized, width, height, directive.gravity)
    case Fit.PAD:
      resized = resize_to(image, *scaled_size(image, min(hscale, vscale)))
      return pad_image(resized, width, height, directive.gravity, directive.background)
    case _:
      raise Exception('system error')


def check_range(
    name: str,
    value: float,
    lower: float,
    upper: float,
    lower_exclusive: bool = False,
) -> None:
  above_lower = lower < value if lower_exclusive else lower <= value
  if not above_lower or upper < value:
    raise TransformError(f'{name} out of range: {value}')


def map_colour(image: Image, fn: Callable[[Image], Image]) -> Image:
  if image.hasalpha():
    colour = image.extract_band(0, n=image.bands - 1)
    alpha = image.extract_band(image.bands - 1)
    return fn(colour).cast(image.format).bandjoin(alpha)
  return fn(image).cast(image.format)


def blur(image: Image, magnitude: int) -> Image:
  check_range('blur', magnitude, config.BLUR_MIN, config.BLUR_MAX)
  if magnitude == 0:
    return image
  return image.gaussblur(magnitude / 2)


def brightness(image: Image, magnitude: float) -> Image:
  check_range('brightness', magnitude, config.BRIGHTNESS_MIN, config.BRIGHTNESS_MAX)
  return map_colour(image, lambda i: i.linear(magnitude, 0))


def contrast(image: Image, magnitude: float) -> Image:
  check_range('contrast', magnitude, config.CONTRAST_MIN, config.CONTRAST_MAX)
  mid = max_value(image) / 2
  return map_colour(image, lambda i: i.linear(magnitude, mid * (1 - magnitude)))


def gamma(image: Image, magnitude: float) -> Image:
  check_range(
      'gamma', magnitude, config.GAMMA_MIN_EXCLUSIVE, config.GAMMA_MAX, lower_exclusive=True)
  return map_colour(image, lambda i: i.gamma(exponent=magnitude))


def sharpen(image: Image, magnitude: float) -> Image:
  check_range('sharpen', magnitude, config.SHARPEN_MIN, config.SHARPEN_MAX)
  if magnitude == 0:
    return image
  return image.sharpen(sigma=config.SHARPEN_SIGMA, m2=magnitude).cast(image.format)


# Geometry always runs first so filters work on the output dimensions.
FILTERS: list[Tuple[str, Callable[[Image, float], Image]]] = [
    ('blur', blur),
    ('brightness', brightness),
    ('contrast', contrast),
    ('gamma', gamma),
    ('sharpen', sharpen),
]


def apply_transforms(image: Image, directive: TransformDirective) -> Image:
  try:
    image = fit_image(image, directive)
    for name, fn in FILTERS:
      magnitude = getattr(directive, name)
      if magnitude is not None:
        image = fn(image, magnitude)
  except Error as e:
    raise TransformError(f'failed to transform: {e}') from e

  return image


def encode(image: Image, fmt: OutputFormat, quality: int) -> TransformedImage:
  try:
    if fmt == OutputFormat.JPEG and image.hasalpha():
      image = image.flatten(background=config.FLATTEN_COLOR)

    if fmt == OutputFormat.PNG:
      body: bytes = image.write_to_buffer(fmt.extension())
    else:
      body = image.write_to_buffer(fmt.extension(), Q=quality)
  except Error as e:
    raise TransformError(f'failed to encode {fmt.value}: {e}') from e

  return TransformedImage(body=body, content_type=fmt.mime)
