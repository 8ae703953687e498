# lms_backend/storage.py
import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from datetime import datetime, timedelta, timezone
from urllib.parse import quote

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from . import config
from .errors import InvalidInput, OperationCancelled, StorageFailure
from .models import ObjectReference, UploadSession, plan_parts
from .utils import epoch_millis

logger = logging.getLogger(__name__)

BACKEND_ERRORS = (ClientError, BotoCoreError)


def create_s3_client(access_key=None, secret_key=None, region=None, endpoint_url=None, max_pool=None):
    """프로세스 전역 S3 클라이언트 생성 (앱 시작 시 1회)"""
    max_pool = max_pool or max(10, config.UPLOAD_MAX_CONCURRENCY * 2)
    return boto3.client(
        's3',
        aws_access_key_id=access_key if access_key is not None else config.SPACES_KEY,
        aws_secret_access_key=secret_key if secret_key is not None else config.SPACES_SECRET,
        region_name=region or config.SPACES_REGION,
        endpoint_url=endpoint_url or config.SPACES_ENDPOINT,
        config=BotoConfig(max_pool_connections=max_pool, retries={'max_attempts': 3, 'mode': 'standard'}),
    )


def build_object_key(namespace, original_name, root=None, timestamp=None):
    """{root}/{namespace}/{timestamp}-{filename} 형식의 키 생성"""
    root = config.MEDIA_NAMESPACE if root is None else root
    timestamp = config.MEDIA_KEY_TIMESTAMPS if timestamp is None else timestamp
    name = f"{epoch_millis()}-{original_name}" if timestamp else original_name
    return '/'.join(part.strip('/') for part in (root, namespace, name) if part)


class ChunkedUploader:
    """
    S3 멀티파트 업로드 클라이언트

    upload() 는 크기에 따라 단일 put 또는 멀티파트 업로드를 수행하고
    ObjectReference 를 돌려준다. 문서에 대해서는 아무것도 모른다.
    """

    def __init__(self, client, bucket, part_size=None, multipart_threshold=None,
                 max_concurrency=None, acl=None, public_base_url=None, endpoint_url=None):
        self.client = client
        self.bucket = bucket
        self.part_size = part_size or config.UPLOAD_PART_SIZE
        self.multipart_threshold = (
            config.MULTIPART_THRESHOLD if multipart_threshold is None else multipart_threshold
        )
        self.max_concurrency = max(1, max_concurrency or config.UPLOAD_MAX_CONCURRENCY)
        self.acl = config.OBJECT_ACL if acl is None else acl
        self.public_base_url = (public_base_url if public_base_url is not None else config.PUBLIC_BASE_URL).rstrip('/')
        self.endpoint_url = (endpoint_url or config.SPACES_ENDPOINT).rstrip('/')

    def public_url(self, key):
        quoted = quote(key.lstrip('/'))
        if self.public_base_url:
            return f"{self.public_base_url}/{quoted}"
        return f"{self.endpoint_url}/{self.bucket}/{quoted}"

    def _extra_args(self, content_type):
        extra = {}
        if self.acl:
            extra['ACL'] = self.acl
        if content_type:
            extra['ContentType'] = content_type
        return extra

    # ==== 업로드 ====

    def upload(self, upload, key, cancel=None):
        """업로드 후 ObjectReference 반환"""
        upload.validate()
        if upload.declared_size < self.multipart_threshold:
            return self.put_small(upload, key, cancel=cancel)
        return self.upload_multipart(upload, key, cancel=cancel)

    def put_small(self, upload, key, cancel=None):
        """단일 PutObject 경로 (썸네일, 아바타)"""
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"업로드 취소됨: {key}")

        upload.byte_source.seek(0)
        body = upload.byte_source.read(upload.declared_size)
        if len(body) != upload.declared_size:
            raise InvalidInput(
                f"파일 크기가 선언된 크기와 다릅니다 ({len(body)} != {upload.declared_size})"
            )

        try:
            self.client.put_object(
                Bucket=self.bucket, Key=key, Body=body,
                **self._extra_args(upload.content_type)
            )
        except BACKEND_ERRORS as e:
            logger.error(f"❌ PutObject 실패 ({key}): {e}")
            raise StorageFailure(f"파일 업로드 실패: {key}") from e

        logger.info(f"✅ 업로드 완료: {key} ({upload.declared_size} bytes)")
        return ObjectReference(key=key, url=self.public_url(key))

    def upload_multipart(self, upload, key, cancel=None):
        """멀티파트 업로드: 시작 -> 파트 업로드 -> 완료 (실패 시 abort)"""
        parts = plan_parts(upload.declared_size, self.part_size)
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"업로드 취소됨: {key}")

        try:
            response = self.client.create_multipart_upload(
                Bucket=self.bucket, Key=key, **self._extra_args(upload.content_type)
            )
        except BACKEND_ERRORS as e:
            logger.error(f"❌ 멀티파트 업로드 시작 실패 ({key}): {e}")
            raise StorageFailure(f"멀티파트 업로드 시작 실패: {key}") from e

        session = UploadSession(
            upload_id=response['UploadId'],
            key=key,
            part_size=self.part_size,
            total_size=upload.declared_size,
        )
        logger.info(
            f"멀티파트 업로드 시작: {key} (upload_id={session.upload_id}, 파트 {len(parts)}개)"
        )

        try:
            if self.max_concurrency == 1 or len(parts) == 1:
                for part in parts:
                    self._upload_part(session, upload.byte_source, part, cancel, None)
            else:
                self._upload_parts_concurrently(session, upload.byte_source, parts, cancel)

            if cancel is not None and cancel.is_set():
                raise OperationCancelled(f"업로드 취소됨: {key}")

            self.client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=session.upload_id,
                MultipartUpload={'Parts': session.completed_parts()},
            )
        except BACKEND_ERRORS as e:
            logger.error(f"❌ 멀티파트 업로드 실패 ({key}): {e}")
            self._abort(session)
            raise StorageFailure(f"멀티파트 업로드 실패: {key}") from e
        except BaseException:
            self._abort(session)
            raise

        logger.info(f"✅ 멀티파트 업로드 완료: {key} ({session.bytes_sent} bytes, 파트 {len(parts)}개)")
        return ObjectReference(key=key, url=self.public_url(key))

    def _upload_parts_concurrently(self, session, source, parts, cancel):
        read_lock = threading.Lock()
        workers = min(self.max_concurrency, len(parts))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(self._upload_part, session, source, part, cancel, read_lock)
                for part in parts
            ]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for future in pending:
                future.cancel()
            # 실행 중인 파트는 끝날 때까지 기다린 뒤 첫 오류를 올린다
            wait(futures)
            for future in futures:
                if not future.cancelled() and future.exception() is not None:
                    raise future.exception()

    def _upload_part(self, session, source, part, cancel, read_lock):
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"업로드 취소됨: {session.key}")

        if read_lock is not None:
            with read_lock:
                source.seek(part.offset)
                data = source.read(part.length)
        else:
            source.seek(part.offset)
            data = source.read(part.length)

        if len(data) != part.length:
            raise InvalidInput(
                f"파일 크기가 선언된 크기보다 작습니다 (파트 {part.part_number}: {len(data)}/{part.length})"
            )

        response = self.client.upload_part(
            Bucket=self.bucket,
            Key=session.key,
            UploadId=session.upload_id,
            PartNumber=part.part_number,
            Body=data,
        )
        if read_lock is not None:
            with read_lock:
                session.record_part(part.part_number, response['ETag'], part.length)
        else:
            session.record_part(part.part_number, response['ETag'], part.length)

        progress = session.bytes_sent / session.total_size * 100
        logger.debug(f"파트 {part.part_number} 업로드 완료 ({progress:.1f}%)")

    def _abort(self, session):
        try:
            self.client.abort_multipart_upload(
                Bucket=self.bucket, Key=session.key, UploadId=session.upload_id
            )
            logger.warning(f"멀티파트 업로드 중단(abort): {session.key} (upload_id={session.upload_id})")
            return True
        except BACKEND_ERRORS as e:
            logger.error(f"❌ 멀티파트 abort 실패 ({session.key}, {session.upload_id}): {e}")
            return False

    # ==== 삭제 / 조회 ====

    def delete(self, key):
        """스토리지 객체 삭제"""
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except BACKEND_ERRORS as e:
            raise StorageFailure(f"파일 삭제 실패: {key}") from e
        logger.info(f"스토리지 객체 삭제 완료: {key}")

    def head_bucket(self):
        self.client.head_bucket(Bucket=self.bucket)

    def list_keys(self, prefix):
        """prefix 아래 (key, last_modified) 목록"""
        params = {'Bucket': self.bucket, 'Prefix': prefix}
        while True:
            try:
                response = self.client.list_objects_v2(**params)
            except BACKEND_ERRORS as e:
                raise StorageFailure(f"객체 목록 조회 실패: {prefix}") from e
            for item in response.get('Contents', []):
                yield item['Key'], item['LastModified']
            if not response.get('IsTruncated'):
                break
            params['ContinuationToken'] = response['NextContinuationToken']

    def list_stale_uploads(self, prefix, older_than_seconds, now=None):
        """idle 타임아웃을 넘긴 미완료 멀티파트 업로드 목록 (key, upload_id)"""
        threshold = (now or datetime.now(timezone.utc)) - timedelta(seconds=older_than_seconds)
        params = {'Bucket': self.bucket, 'Prefix': prefix}
        while True:
            try:
                response = self.client.list_multipart_uploads(**params)
            except BACKEND_ERRORS as e:
                raise StorageFailure(f"멀티파트 업로드 목록 조회 실패: {prefix}") from e
            for item in response.get('Uploads', []):
                if item['Initiated'] <= threshold:
                    yield item['Key'], item['UploadId']
            if not response.get('IsTruncated'):
                break
            params['KeyMarker'] = response['NextKeyMarker']
            params['UploadIdMarker'] = response['NextUploadIdMarker']

    def abort_upload(self, key, upload_id):
        """미완료 멀티파트 업로드 abort (성공 여부 반환)"""
        return self._abort(UploadSession(upload_id=upload_id, key=key, part_size=self.part_size, total_size=0))
