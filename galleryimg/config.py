import re

DEFAULT_QUALITY = 85
DEFAULT_FORMAT = 'auto'
DEFAULT_FIT = 'scale-down'

MIN_QUALITY = 1
MAX_QUALITY = 100

# Consulted in order when the requested format is 'auto'.
FORMAT_PREFERENCE = ('avif', 'webp')
BASELINE_FORMAT = 'jpeg'

AUTO_WIDTH_DIRECTIVE = 'width=auto'
MOBILE_WIDTH = 320
TABLET_WIDTH = 768
DESKTOP_WIDTH = 1200

mobile_ua_re = re.compile(r'Mobile|Android|iPhone|iPad', re.IGNORECASE)
tablet_ua_re = re.compile(r'iPad|Tablet', re.IGNORECASE)

BROWSER_MAX_AGE = 24 * 60 * 60
EDGE_MAX_AGE = 365 * 24 * 60 * 60
FALLBACK_MAX_AGE = 60 * 60

CACHE_CONTROL_OPTIMIZED = f'public, max-age={BROWSER_MAX_AGE}, s-maxage={EDGE_MAX_AGE}'
CACHE_CONTROL_FALLBACK = f'public, max-age={FALLBACK_MAX_AGE}'
CACHE_CONTROL_NO_STORE = 'no-store'

OPTIMIZED_HEADER = 'x-image-optimized'
TRANSFORM_OPTIONS_HEADER = 'x-transform-options'
FALLBACK_HEADER = 'x-fallback'
FALLBACK_VALUE = 'original-r2'
VARY_VALUE = 'Accept, User-Agent'

# Inclusive bounds unless the name says otherwise.
BLUR_MIN = 0
BLUR_MAX = 250
BRIGHTNESS_MIN = 0.0
BRIGHTNESS_MAX = 10.0
CONTRAST_MIN = 0.0
CONTRAST_MAX = 10.0
GAMMA_MIN_EXCLUSIVE = 0.0
GAMMA_MAX = 10.0
SHARPEN_MIN = 0.0
SHARPEN_MAX = 10.0

SHARPEN_SIGMA = 1.0
PADDING_COLOR = [255.0, 255.0, 255.0]
FLATTEN_COLOR = [255.0, 255.0, 255.0]

IMAGE_PREFIX = '/cdn-cgi/image/'
INFO_PREFIX = '/info/'
HEALTH_PATH = '/health'
ALLOWED_METHODS = ('GET', 'HEAD')

SERVICE_NAME = 'gallery-image-optimizer'
FEATURES = [
    'dynamic-resizing',
    'format-optimization',
    'responsive-images',
    'aggressive-caching',
    'webp-avif-support',
]

# Lambda@Edge rejects generated responses whose body exceeds this size.
MAX_BODY_BYTES = 1_000_000
