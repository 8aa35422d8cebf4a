import base64
import dataclasses
import datetime
import json
import time
from http import HTTPStatus
from logging import Logger
from typing import Any, Literal, Optional, Tuple
from urllib import parse

import boto3
from dateutil import tz
from mypy_boto3_s3.client import S3Client

from galleryimg import config
from galleryimg.jsonlog import init_logging
from galleryimg.originrequest.bucket import Bucket, SourceObject
from galleryimg.originrequest.directive import (
    TransformDirective,
    resolve_directive
)
from galleryimg.originrequest.negotiation import (
    AcceptHeader,
    OutputFormat,
    negotiate_format
)
from galleryimg.originrequest.pipeline import (
    TransformedImage,
    TransformError,
    apply_transforms,
    decode,
    encode
)
from galleryimg.typing import (
    HttpPath,
    OriginRequestEvent,
    Request,
    ResponseResult,
    S3Key
)
from galleryimg.urls import optimized_urls

logger = init_logging(__name__)


def get_now() -> datetime.datetime:
  # Return timezone-aware datetime
  return datetime.datetime.now(tz=tz.tzutc())


def json_dump(obj: Any) -> str:
  return json.dumps(obj, separators=(',', ':'), sort_keys=True)


@dataclasses.dataclass(frozen=True)
class Optimized:
  image: TransformedImage
  directive: TransformDirective
  output_format: OutputFormat
  vips_us: int

  def resolved_options(self) -> dict[str, Any]:
    return {**self.directive.to_dict(), 'format': self.output_format.value}


@dataclasses.dataclass(frozen=True)
class Fallback:
  original: SourceObject


@dataclasses.dataclass(frozen=True)
class NotFound:
  key: S3Key


@dataclasses.dataclass(frozen=True)
class Failed:
  reason: str


@dataclasses.dataclass(frozen=True)
class BadRequest:
  message: str


@dataclasses.dataclass(frozen=True)
class OriginFallback:
  key: S3Key


TransformResult = Optimized | Fallback | OriginFallback | NotFound | Failed | BadRequest


@dataclasses.dataclass(frozen=True)
class FieldUpdate:
  uri: HttpPath
  reason: str


@dataclasses.dataclass(frozen=True)
class InstantResponse:
  status: int
  body: Optional[str]
  body_encoding: Literal['text', 'base64']
  headers: dict[str, str]

  @classmethod
  def text(cls, status: int, message: str) -> 'InstantResponse':
    return cls(
        status=status,
        body=message,
        body_encoding='text',
        headers={
            'Cache-Control': config.CACHE_CONTROL_NO_STORE,
            'Content-Type': 'text/plain; charset=UTF-8',
        })

  @classmethod
  def json(cls, status: int, obj: Any) -> 'InstantResponse':
    return cls(
        status=status,
        body=json_dump(obj),
        body_encoding='text',
        headers={
            'Cache-Control': config.CACHE_CONTROL_NO_STORE,
            'Content-Type': 'application/json',
        })

  @classmethod
  def binary(cls, status: int, body: bytes, headers: dict[str, str]) -> 'InstantResponse':
    return cls(
        status=status,
        body=base64.b64encode(body).decode(),
        body_encoding='base64',
        headers=headers)


def assemble_response(result: TransformResult) -> InstantResponse:
  match result:
    case Optimized():
      return InstantResponse.binary(
          HTTPStatus.OK, result.image.body, {
              'Content-Type': result.image.content_type,
              'Cache-Control': config.CACHE_CONTROL_OPTIMIZED,
              'X-Image-Optimized': 'true',
              'X-Transform-Options': json_dump(result.resolved_options()),
              'Vary': config.VARY_VALUE,
          })
    case Fallback():
      return InstantResponse.binary(
          HTTPStatus.OK, result.original.body, {
              **result.original.http_headers(),
              'Cache-Control': config.CACHE_CONTROL_FALLBACK,
              'X-Fallback': config.FALLBACK_VALUE,
          })
    case NotFound():
      return InstantResponse.text(HTTPStatus.NOT_FOUND, 'Image not found')
    case BadRequest():
      return InstantResponse.text(HTTPStatus.BAD_REQUEST, result.message)
    case Failed():
      return InstantResponse.text(HTTPStatus.INTERNAL_SERVER_ERROR, 'Image processing failed')
    case _:
      raise Exception('system error')


def get_header(req: Request, name: str) -> str:
  return req['origin']['s3']['customHeaders'][name][0]['value']


def get_header_or(req: Request, name: str, default: str = '') -> str:
  return (get_header(req, name) if name in req['origin']['s3']['customHeaders'] else default)


def get_request_header(req: Request, name: str) -> str:
  if name not in req['headers'] or len(req['headers'][name]) == 0:
    return ''
  return req['headers'][name][0]['value']


def b64_size(n: int) -> int:
  return 4 * -(n // -3)


def key_from_path(path: str) -> S3Key:
  return S3Key(parse.unquote(path))


def split_image_path(path: HttpPath) -> Tuple[str, S3Key]:
  rest = path[len(config.IMAGE_PREFIX):]
  options, _, key = rest.partition('/')
  return (parse.unquote(options), key_from_path(key))


@dataclasses.dataclass(eq=True, frozen=True)
class XParams:
  region: str
  original_bucket: str
  service_name: str
  max_body_bytes: int


class ImgServer:
  instances: dict[XParams, 'ImgServer'] = {}

  def __init__(
      self,
      log: Logger,
      region: str,
      s3: S3Client,
      original_bucket: str,
      service_name: str = config.SERVICE_NAME,
      max_body_bytes: int = config.MAX_BODY_BYTES,
  ):
    self.log = log
    self.region = region
    self.s3 = s3
    self.original_bucket = original_bucket
    self.bucket = Bucket(s3, original_bucket)
    self.service_name = service_name
    self.max_body_bytes = max_body_bytes
    self.log_context = {'path': '', 'qstr': '', 'accept_header': '', 'user_agent': ''}

  @classmethod
  def from_lambda(
      cls,
      log: Logger,
      req: Request,
  ) -> Optional['ImgServer']:
    try:
      region = get_header(req, 'x-env-region')
      original_bucket = req['origin']['s3']['domainName'].split('.', 1)[0]
      service_name = get_header_or(req, 'x-env-service-name', config.SERVICE_NAME)
      max_body_bytes = int(
          get_header_or(req, 'x-env-max-body-bytes', str(config.MAX_BODY_BYTES)))
    except KeyError as e:
      log.warning({
          'message': 'environment variable not found',
          'key': str(e),
      })
      return None
    except ValueError as e:
      log.warning({
          'message': 'invalid environment variable',
          'reason': str(e),
      })
      return None

    server_key = XParams(
        region=region,
        original_bucket=original_bucket,
        service_name=service_name,
        max_body_bytes=max_body_bytes)

    if server_key not in cls.instances:
      s3 = boto3.client('s3', region_name=region)
      cls.instances[server_key] = cls(
          log=log,
          region=region,
          s3=s3,
          original_bucket=original_bucket,
          service_name=service_name,
          max_body_bytes=max_body_bytes)

    return cls.instances[server_key]

  def log_warning(self, message: str, dict: dict[str, Any]) -> None:
    self.log.warning({
        'message': message,
        **self.log_context,
        **dict,
    })

  def log_debug(self, message: str, dict: dict[str, Any]) -> None:
    self.log.debug({
        'message': message,
        **self.log_context,
        **dict,
    })

  def log_error(self, message: str, dict: dict[str, Any]) -> None:
    self.log.error({
        'message': message,
        **self.log_context,
        **dict,
    })

  def optimize(
      self,
      key: S3Key,
      directive: TransformDirective,
      accept: AcceptHeader,
  ) -> Optimized | NotFound:
    source = self.bucket.get(key)
    if source is None:
      return NotFound(key)

    start_ns = time.time_ns()

    image = apply_transforms(decode(source.body), directive)
    output_format = negotiate_format(directive.format, accept)
    transformed = encode(image, output_format, directive.quality)

    vips_us = (time.time_ns() - start_ns) // 1000

    size = b64_size(len(transformed.body))
    if self.max_body_bytes < size:
      raise TransformError(f'rendition too large: {size}')

    return Optimized(
        image=transformed, directive=directive, output_format=output_format, vips_us=vips_us)

  def fallback(self, key: S3Key) -> Fallback | OriginFallback | Failed:
    try:
      original = self.bucket.get(key)
    except Exception as e:
      self.log_error('failed to fetch original', {'reason': str(e), 'key': key})
      return Failed(reason=str(e))

    if original is None:
      self.log_error('original disappeared', {'key': key})
      return Failed(reason='original not found')

    size = b64_size(len(original.body))
    if self.max_body_bytes < size:
      self.log_warning('original too large to return', {'key': key, 'b64_size': size})
      return OriginFallback(key)

    return Fallback(original)

  def transform(
      self,
      options: str,
      key: S3Key,
      qs: dict[str, list[str]],
      accept: AcceptHeader,
      user_agent: str,
  ) -> TransformResult:
    if key == '':
      return BadRequest('Image path required')

    directive = resolve_directive(options, qs, user_agent)

    try:
      return self.optimize(key, directive, accept)
    except Exception as e:
      self.log_warning('failed to optimize', {'reason': str(e), 'key': key})

    return self.fallback(key)

  def health(self) -> InstantResponse:
    return InstantResponse.json(
        HTTPStatus.OK, {
            'status': 'ok',
            'service': self.service_name,
            'timestamp': get_now().isoformat(),
            'features': config.FEATURES,
        })

  def info(self, key: S3Key) -> InstantResponse:
    if key == '':
      return InstantResponse.json(HTTPStatus.BAD_REQUEST, {'error': 'Image path required'})

    try:
      obj = self.bucket.head(key)
    except Exception as e:
      self.log_error('failed to get image info', {'reason': str(e), 'key': key})
      return InstantResponse.json(
          HTTPStatus.INTERNAL_SERVER_ERROR, {'error': 'Failed to get image info'})

    if obj is None:
      return InstantResponse.json(HTTPStatus.NOT_FOUND, {'error': 'Image not found'})

    return InstantResponse.json(
        HTTPStatus.OK, {
            'path': key,
            'size': obj.size,
            'etag': obj.etag,
            'uploaded': obj.last_modified.isoformat(),
            'httpMetadata': obj.http_metadata(),
            'customMetadata': obj.metadata,
            'optimizedUrls': optimized_urls(key),
        })

  def process(
      self,
      path: HttpPath,
      qstr: str,
      accept_header: str,
      user_agent: str,
  ) -> Optional[InstantResponse | FieldUpdate]:
    if path == config.HEALTH_PATH:
      return self.health()

    if path.startswith(config.INFO_PREFIX):
      return self.info(key_from_path(path[len(config.INFO_PREFIX):]))

    if path.startswith(config.IMAGE_PREFIX):
      options, key = split_image_path(path)
      self.log_debug('processing image', {'key': key, 'options': options})
      result = self.transform(
          options, key, parse.parse_qs(qstr), AcceptHeader.from_str(accept_header), user_agent)
      if isinstance(result, Optimized):
        self.log_debug(
            'optimized', {
                'key': key,
                'format': result.output_format.value,
                'img_size': len(result.image.body),
                'vips_us': result.vips_us,
            })
      if isinstance(result, OriginFallback):
        return FieldUpdate(
            uri=HttpPath('/' + parse.quote(result.key)), reason='original too large')
      return assemble_response(result)

    return None

  def set_log_context(self, path: HttpPath, qstr: str, accept_header: str, user_agent: str) -> None:
    self.log_context = {
        'path': str(path),
        'qstr': qstr,
        'accept_header': accept_header,
        'user_agent': user_agent,
    }


def to_response_result(res: InstantResponse) -> ResponseResult:
  response_result: ResponseResult = {
      'status': str(int(res.status)),
      'statusDescription': HTTPStatus(res.status).phrase,
      'headers': {
          name.lower(): [{
              'key': name,
              'value': value,
          }] for name, value in res.headers.items()
      },
  }

  if res.body is not None:
    response_result['body'] = res.body
    response_result['bodyEncoding'] = res.body_encoding

  return response_result


def lambda_main(event: OriginRequestEvent) -> Request | ResponseResult:
  req = event['Records'][0]['cf']['request']

  server = ImgServer.from_lambda(logger, req)
  if server is None:
    return req

  if req['method'] not in config.ALLOWED_METHODS:
    server.log_debug('passed through', {'uri': req['uri'], 'method': req['method']})
    return req

  path = req['uri']
  qstr = req['querystring']
  accept_header = get_request_header(req, 'accept')
  user_agent = get_request_header(req, 'user-agent')

  server.set_log_context(path, qstr, accept_header, user_agent)
  res = server.process(path, qstr, accept_header, user_agent)

  if res is None:
    server.log_debug('passed through', {'uri': req['uri']})
    return req

  if isinstance(res, FieldUpdate):
    req['uri'] = res.uri
    req['querystring'] = ''
    server.log_debug('done', {'uri': req['uri'], 'reason': res.reason})
    return req

  server.log_debug(
      'responded', {
          'uri': req['uri'],
          'status': res.status,
          'cache_control': res.headers.get('Cache-Control'),
          'content_type': res.headers.get('Content-Type'),
      })

  return to_response_result(res)
