from typing import Tuple

import pytest
from pyvips import Image  # type: ignore

from .directive import Fit, Gravity, TransformDirective
from .negotiation import OutputFormat
from .pipeline import (
    InvalidBackground,
    TransformError,
    apply_transforms,
    decode,
    encode,
    fit_image,
    parse_color
)

LOADER_MAP = {
    'jpegload': 'image/jpeg',
    'jpegload_buffer': 'image/jpeg',
    'jpegload_source': 'image/jpeg',
    'pngload': 'image/png',
    'pngload_buffer': 'image/png',
    'pngload_source': 'image/png',
    'webpload': 'image/webp',
    'webpload_buffer': 'image/webp',
    'webpload_source': 'image/webp',
}


def to_rgb(grey: Image) -> Image:
  return grey.bandjoin([grey, grey]).copy(interpretation='srgb')


def make_split_image(width: int, height: int) -> Image:
  # Left half black, right half white.
  half = width // 2
  left = Image.black(half, height)
  right = (Image.black(width - half, height) + 255).cast('uchar')
  return to_rgb(left.join(right, 'horizontal'))


def make_flat_image(width: int, height: int, value: int) -> Image:
  return to_rgb((Image.black(width, height) + value).cast('uchar'))


def size_of(image: Image) -> Tuple[int, int]:
  return (image.width, image.height)


@pytest.mark.parametrize(
    'directive,expected', [
        (TransformDirective(), (400, 200)),
        (TransformDirective(width=100), (100, 50)),
        (TransformDirective(height=50), (100, 50)),
        (TransformDirective(width=800), (400, 200)),
        (TransformDirective(width=800, fit=Fit.CONTAIN), (800, 400)),
        (TransformDirective(width=100, height=100), (100, 50)),
        (TransformDirective(width=1000, height=1000), (400, 200)),
        (TransformDirective(width=1000, height=1000, fit=Fit.CONTAIN), (1000, 500)),
        (TransformDirective(width=100, height=100, fit=Fit.COVER), (100, 100)),
        (TransformDirective(width=800, height=800, fit=Fit.COVER), (800, 800)),
        (TransformDirective(width=100, height=100, fit=Fit.CROP), (100, 100)),
        (TransformDirective(width=1000, height=1000, fit=Fit.CROP), (400, 200)),
        (TransformDirective(width=800, height=100, fit=Fit.CROP), (400, 100)),
        (TransformDirective(width=100, height=100, fit=Fit.PAD), (100, 100)),
        (TransformDirective(width=1000, height=1000, fit=Fit.PAD), (1000, 1000)),
    ],
    ids=[
        'none',
        'width',
        'height',
        'width/no_enlarge',
        'width/contain',
        'scale_down',
        'scale_down/no_enlarge',
        'contain',
        'cover',
        'cover/enlarge',
        'crop',
        'crop/small',
        'crop/partial',
        'pad',
        'pad/enlarge',
    ])
def test_fit_image(directive: TransformDirective, expected: Tuple[int, int]) -> None:
  assert expected == size_of(fit_image(make_split_image(400, 200), directive))


@pytest.mark.parametrize('fit', [Fit.COVER, Fit.CROP])
def test_crop_gravity(fit: Fit) -> None:
  src = make_split_image(400, 200)

  left = fit_image(src, TransformDirective(width=100, height=100, fit=fit, gravity=Gravity.LEFT))
  right = fit_image(src, TransformDirective(width=100, height=100, fit=fit, gravity=Gravity.RIGHT))

  assert (100, 100) == size_of(left)
  assert (100, 100) == size_of(right)
  assert left.avg() < 64
  assert 192 < right.avg()


@pytest.mark.parametrize('gravity', [Gravity.AUTO, Gravity.SIDE, Gravity.CENTER])
def test_crop_other_gravities(gravity: Gravity) -> None:
  image = fit_image(
      make_split_image(400, 200),
      TransformDirective(width=100, height=100, fit=Fit.COVER, gravity=gravity))

  assert (100, 100) == size_of(image)


def test_pad_background() -> None:
  image = fit_image(
      make_split_image(400, 200),
      TransformDirective(width=100, height=100, fit=Fit.PAD, background='ff0000'))

  # The 100x50 rendition sits in the vertical middle.
  assert [255.0, 0.0, 0.0] == image.getpoint(0, 0)
  assert [255.0, 0.0, 0.0] == image.getpoint(0, 99)
  assert image.getpoint(10, 50)[0] < 10


def test_pad_default_background() -> None:
  image = fit_image(
      make_split_image(400, 200), TransformDirective(width=100, height=100, fit=Fit.PAD))

  assert [255.0, 255.0, 255.0] == image.getpoint(0, 0)


def test_pad_gravity_top() -> None:
  image = fit_image(
      make_split_image(400, 200),
      TransformDirective(width=100, height=100, fit=Fit.PAD, gravity=Gravity.TOP, background='red'))

  assert image.getpoint(10, 0)[0] < 10
  assert [255.0, 0.0, 0.0] == image.getpoint(10, 99)


def test_pad_keeps_alpha() -> None:
  src = make_split_image(400, 200).bandjoin(255)
  image = fit_image(
      src, TransformDirective(width=100, height=100, fit=Fit.PAD, background='#00f'))

  assert 4 == image.bands
  assert [0.0, 0.0, 255.0, 255.0] == image.getpoint(0, 0)


def test_pad_invalid_background() -> None:
  with pytest.raises(TransformError):
    apply_transforms(
        make_split_image(400, 200),
        TransformDirective(width=100, height=100, fit=Fit.PAD, background='not-a-colour'))


@pytest.mark.parametrize(
    'color,expected', [
        ('fff', [255.0, 255.0, 255.0]),
        ('#000000', [0.0, 0.0, 0.0]),
        ('#1A2b3C', [26.0, 43.0, 60.0]),
        ('rgb(1, 2, 3)', [1.0, 2.0, 3.0]),
        ('White', [255.0, 255.0, 255.0]),
    ])
def test_parse_color(color: str, expected: list[float]) -> None:
  assert expected == parse_color(color)


@pytest.mark.parametrize('color', ['', '#ff', 'rgb(256,0,0)', 'transparent', '#gggggg'])
def test_parse_color_invalid(color: str) -> None:
  with pytest.raises(InvalidBackground):
    parse_color(color)


def test_resize_runs_before_blur() -> None:
  src = make_split_image(200, 200)
  directive = TransformDirective(width=20, blur=4)

  got = apply_transforms(src, directive)

  resize_then_blur = src.resize(0.1, vscale=0.1).gaussblur(2)
  blur_then_resize = src.gaussblur(2).resize(0.1, vscale=0.1)

  assert (20, 20) == size_of(got)
  assert 0 == (got - resize_then_blur).abs().max()
  assert 0 < (got - blur_then_resize).abs().max()


@pytest.mark.parametrize(
    'directive,expected', [
        (TransformDirective(brightness=2.0), 200),
        (TransformDirective(brightness=0.5), 50),
        (TransformDirective(brightness=3.0), 255),
        (TransformDirective(brightness=1.0), 100),
        (TransformDirective(contrast=1.0), 100),
    ],
    ids=['brighter', 'darker', 'clipped', 'brightness_identity', 'contrast_identity'])
def test_tone_filters(directive: TransformDirective, expected: int) -> None:
  assert expected == apply_transforms(make_flat_image(10, 10, 100), directive).avg()


def test_contrast_moves_away_from_middle() -> None:
  assert apply_transforms(make_flat_image(10, 10, 100), TransformDirective(contrast=2.0)).avg() < 100
  assert 150 < apply_transforms(make_flat_image(10, 10, 200), TransformDirective(contrast=2.0)).avg()


def test_gamma_changes_image() -> None:
  assert 100 != apply_transforms(make_flat_image(10, 10, 100), TransformDirective(gamma=2.0)).avg()


def test_tone_filters_keep_alpha() -> None:
  src = make_flat_image(10, 10, 100).bandjoin(128)
  image = apply_transforms(src, TransformDirective(brightness=2.0, contrast=1.5, gamma=1.2))

  assert 4 == image.bands
  assert 128 == image.extract_band(3).avg()


def test_filters_do_not_touch_source() -> None:
  src = make_flat_image(10, 10, 100)
  apply_transforms(src, TransformDirective(brightness=2.0, blur=3, sharpen=2.0))

  assert 100 == src.avg()


def test_sharpen_and_zero_magnitudes() -> None:
  src = make_split_image(100, 100)

  assert (100, 100) == size_of(apply_transforms(src, TransformDirective(sharpen=2.0)))
  assert 0 == (apply_transforms(src, TransformDirective(blur=0, sharpen=0.0)) - src).abs().max()


@pytest.mark.parametrize(
    'directive', [
        TransformDirective(blur=-1),
        TransformDirective(blur=251),
        TransformDirective(brightness=-0.5),
        TransformDirective(brightness=10.5),
        TransformDirective(contrast=11.0),
        TransformDirective(gamma=0.0),
        TransformDirective(gamma=20.0),
        TransformDirective(sharpen=-1.0),
        TransformDirective(sharpen=11.0),
    ])
def test_out_of_range_magnitudes(directive: TransformDirective) -> None:
  with pytest.raises(TransformError):
    apply_transforms(make_flat_image(10, 10, 100), directive)


def test_decode_broken() -> None:
  with pytest.raises(TransformError):
    decode(b'definitely not an image')


@pytest.mark.parametrize('fmt', [OutputFormat.JPEG, OutputFormat.PNG, OutputFormat.WEBP])
def test_encode(fmt: OutputFormat) -> None:
  transformed = encode(make_split_image(40, 20), fmt, 80)
  image = Image.new_from_buffer(transformed.body, '')

  assert fmt.mime == transformed.content_type
  assert fmt.mime == LOADER_MAP[image.get('vips-loader')]
  assert (40, 20) == size_of(image)


def test_encode_jpeg_flattens_alpha() -> None:
  transformed = encode(make_split_image(40, 20).bandjoin(0), OutputFormat.JPEG, 80)
  image = Image.new_from_buffer(transformed.body, '')

  assert 3 == image.bands
  assert 250 < image.getpoint(0, 0)[0]


def test_decode_round_trip() -> None:
  body = make_split_image(40, 20).write_to_buffer('.png')
  assert (40, 20) == size_of(decode(body))
