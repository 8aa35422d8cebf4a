from typing import Any, Optional, TypedDict

from galleryimg import config
from galleryimg.originrequest.directive import Fit

RESPONSIVE_WIDTHS = [320, 640, 960, 1280, 2560]
RESPONSIVE_DEFAULT_WIDTH = 960
RESPONSIVE_SIZES = '(max-width: 640px) 100vw, (max-width: 1280px) 50vw, 33vw'


class ResponsiveImage(TypedDict):
  src: str
  srcset: str
  sizes: str


def transform_url(file_name: str, options: list[tuple[str, Any]], base_url: str = '') -> str:
  option_string = ','.join(f'{k}={v}' for k, v in options)
  return f'{base_url}{config.IMAGE_PREFIX}{option_string}/{file_name}'


def image_url(
    file_name: str,
    base_url: str = '',
    width: Optional[int] = None,
    height: Optional[int] = None,
    quality: Optional[int] = None,
    fit: Optional[Fit] = None,
) -> str:
  if width is None and height is None and quality is None and fit is None:
    return transform_url(
        file_name, [('format', 'auto'), ('quality', config.DEFAULT_QUALITY)], base_url)

  # The transformer ignores 'onerror'.
  options: list[tuple[str, Any]] = [('format', 'auto'), ('onerror', 'redirect')]
  if width is not None:
    options.append(('width', width))
  if height is not None:
    options.append(('height', height))
  if quality is not None:
    options.append(('quality', quality))
  if fit is not None:
    options.append(('fit', fit.value))

  return transform_url(file_name, options, base_url)


def responsive_image_urls(
    file_name: str,
    base_url: str = '',
    quality: Optional[int] = None,
    fit: Optional[Fit] = None,
) -> ResponsiveImage:
  q = config.DEFAULT_QUALITY if quality is None else quality
  f = Fit(config.DEFAULT_FIT) if fit is None else fit

  def url(width: int) -> str:
    return transform_url(
        file_name, [('format', 'auto'), ('quality', q), ('fit', f.value), ('width', width)],
        base_url)

  return {
      'src': url(RESPONSIVE_DEFAULT_WIDTH),
      'srcset': ', '.join(f'{url(w)} {w}w' for w in RESPONSIVE_WIDTHS),
      'sizes': RESPONSIVE_SIZES,
  }


def optimized_urls(key: str) -> dict[str, str]:
  return {
      'small': transform_url(key, [('width', 320), ('quality', 80)]),
      'medium': transform_url(key, [('width', 768), ('quality', 85)]),
      'large': transform_url(key, [('width', 1200), ('quality', 85)]),
      'webp': transform_url(key, [('format', 'webp'), ('quality', 85)]),
      'avif': transform_url(key, [('format', 'avif'), ('quality', 80)]),
  }
