import dataclasses
import datetime
from typing import Any, Optional

from botocore.exceptions import ClientError
from mypy_boto3_s3.client import S3Client
from mypy_boto3_s3.type_defs import (
    GetObjectOutputTypeDef,
    HeadObjectOutputTypeDef
)

from galleryimg.typing import S3Key

# Stored S3 attributes replayed as HTTP headers when the original is served.
HTTP_METADATA_FIELDS = [
    ('ContentType', 'Content-Type', 'contentType'),
    ('ContentLanguage', 'Content-Language', 'contentLanguage'),
    ('ContentDisposition', 'Content-Disposition', 'contentDisposition'),
    ('ContentEncoding', 'Content-Encoding', 'contentEncoding'),
    ('CacheControl', 'Cache-Control', 'cacheControl'),
]


def is_not_found_client_error(exception: ClientError) -> bool:
  if 'Error' not in exception.response:
    return False
  if 'Code' not in exception.response['Error']:
    return False
  return exception.response['Error']['Code'] in ['404', 'NoSuchKey']


@dataclasses.dataclass(frozen=True)
class SourceObject:
  key: S3Key
  body: bytes
  size: int
  content_type: str
  etag: str
  last_modified: datetime.datetime
  metadata: dict[str, str]
  stored: dict[str, str]

  @classmethod
  def from_s3_object(
      cls,
      key: S3Key,
      obj: GetObjectOutputTypeDef | HeadObjectOutputTypeDef,
      body: bytes,
  ) -> 'SourceObject':
    src: Any = obj
    stored = {field: src[field] for field, _, _ in HTTP_METADATA_FIELDS if src.get(field)}

    return cls(
        key=key,
        body=body,
        size=obj.get('ContentLength', len(body)),
        content_type=obj.get('ContentType', 'application/octet-stream'),
        etag=obj.get('ETag', ''),
        last_modified=obj['LastModified'],
        metadata=dict(obj.get('Metadata', {})),
        stored=stored)

  def http_headers(self) -> dict[str, str]:
    return {
        header: self.stored[field] for field, header, _ in HTTP_METADATA_FIELDS if field in self.stored
    }

  def http_metadata(self) -> dict[str, str]:
    return {name: self.stored[field] for field, _, name in HTTP_METADATA_FIELDS if field in self.stored}


class Bucket:

  def __init__(self, s3: S3Client, name: str):
    self.s3 = s3
    self.name = name

  def get(self, key: S3Key) -> Optional[SourceObject]:
    try:
      res = self.s3.get_object(Bucket=self.name, Key=key)
    except ClientError as e:
      if is_not_found_client_error(e):
        return None
      raise e

    body = res['Body'].read()
    return SourceObject.from_s3_object(key, res, body)

  def head(self, key: S3Key) -> Optional[SourceObject]:
    try:
      res = self.s3.head_object(Bucket=self.name, Key=key)
    except ClientError as e:
      if is_not_found_client_error(e):
        return None
      raise e

    return SourceObject.from_s3_object(key, res, b'')
