from typing import Literal, NewType, NotRequired, ReadOnly, TypedDict

HttpPath = NewType('HttpPath', str)
S3Key = NewType('S3Key', str)


class Header(TypedDict):
  key: NotRequired[ReadOnly[str]]
  value: str


class S3Origin(TypedDict):
  customHeaders: dict[str, list[Header]]
  domainName: str
  path: str
  readTimeout: int
  responseCompletionTimeout: int
  authMethod: Literal['origin-access-identity', 'none']
  region: NotRequired[str]


class CustomOrigin(TypedDict):
  customHeaders: dict[str, list[Header]]
  domainName: str
  path: str
  keepaliveTimeout: int
  port: int
  protocol: Literal['http', 'https']
  readTimeout: int
  responseCompletionTimeout: int
  sslProtocols: list[Literal['TLSv1.2', 'TLSv1.1', 'TLSv1', 'SSLv3']]


class Origin(TypedDict):
  custom: NotRequired[CustomOrigin]
  s3: NotRequired[S3Origin]


class Request(TypedDict):
  method: ReadOnly[Literal['GET', 'HEAD', 'OPTIONS', 'TRACE', 'PUT', 'DELETE', 'POST', 'PATCH',
                           'CONNECT']]
  uri: HttpPath
  querystring: str
  headers: dict[str, list[Header]]
  clientIp: ReadOnly[str]
  origin: Origin


class OriginRequestConfig(TypedDict):
  distributionDomainName: ReadOnly[str]
  distributionId: ReadOnly[str]
  eventType: ReadOnly[Literal['origin-request']]
  requestId: ReadOnly[str]


class OriginRequestRecord(TypedDict):
  config: ReadOnly[OriginRequestConfig]
  request: Request


class OriginRequestRecordContainer(TypedDict):
  cf: OriginRequestRecord


class OriginRequestEvent(TypedDict):
  Records: list[OriginRequestRecordContainer]


class ResponseResult(TypedDict):
  body: NotRequired[str]
  bodyEncoding: NotRequired[Literal['text', 'base64']]
  headers: NotRequired[dict[str, list[Header]]]
  status: str
  statusDescription: NotRequired[str]
