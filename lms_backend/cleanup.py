# lms_backend/cleanup.py
"""
재시도 / 정리 정책

- 교체·삭제 중 스토리지 삭제 실패: 제한된 횟수만큼 재시도 후 고아 객체로 기록
- 업로드 후 문서 저장 실패: 새 객체는 삭제하지 않고 고아 객체로 기록
- reconcile(): 주기적으로 고아 객체 / 미참조 객체 / 오래된 멀티파트 업로드 정리
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List

from . import config
from .errors import StorageFailure
from .models import referenced_keys

logger = logging.getLogger(__name__)

ORPHAN_PENDING = 'pending'
ORPHAN_DELETED = 'deleted'
ORPHAN_REFERENCED = 'referenced'


@dataclass
class OrphanedObject:
    key: str
    reason: str
    orphan_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: str = ORPHAN_PENDING
    attempts: int = 0
    recorded_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    def to_document(self):
        return {
            'id': self.orphan_id,
            'key': self.key,
            'reason': self.reason,
            'status': self.status,
            'attempts': self.attempts,
            'recorded_at': self.recorded_at,
        }

    @classmethod
    def from_document(cls, document):
        return cls(
            key=document['key'],
            reason=document.get('reason', ''),
            orphan_id=document['id'],
            status=document.get('status', ORPHAN_PENDING),
            attempts=document.get('attempts', 0),
            recorded_at=document.get('recorded_at', ''),
        )


class OrphanRegistry:
    """고아 객체 기록 (orphaned_objects 컬렉션)"""

    def __init__(self, store):
        self.store = store

    def record(self, key, reason):
        orphan = OrphanedObject(key=key, reason=reason)
        try:
            self.store.save(orphan.to_document())
            logger.warning(f"고아 객체 기록: {key} ({reason})")
        except Exception as e:
            logger.error(f"❌ 고아 객체 기록 실패 ({key}, {reason}): {e}")
        return orphan

    def pending(self) -> List[OrphanedObject]:
        return [
            OrphanedObject.from_document(document)
            for document in self.store.find_by_field('status', ORPHAN_PENDING)
        ]

    def mark(self, orphan, status):
        self.store.update_one(orphan.orphan_id, {
            'status': status,
            'attempts': orphan.attempts,
            'resolved_at': datetime.utcnow().isoformat(),
        })

    def mark_attempt(self, orphan):
        self.store.update_one(orphan.orphan_id, {'attempts': orphan.attempts})


@dataclass
class ReconcileReport:
    orphans_deleted: int = 0
    orphans_referenced: int = 0
    unreferenced_deleted: int = 0
    uploads_aborted: int = 0
    failures: int = 0


class CleanupPolicy:
    def __init__(self, uploader, registry, delete_attempts=None, retry_delay=None, sleep=time.sleep):
        self.uploader = uploader
        self.registry = registry
        self.delete_attempts = max(1, delete_attempts or config.DELETE_RETRY_ATTEMPTS)
        self.retry_delay = config.DELETE_RETRY_DELAY if retry_delay is None else retry_delay
        self._sleep = sleep

    def delete_superseded(self, key, reason):
        """교체되었거나 소유 레코드가 삭제된 객체 삭제. 실패해도 예외를 올리지 않는다."""
        for attempt in range(self.delete_attempts):
            try:
                self.uploader.delete(key)
                return True
            except StorageFailure as e:
                logger.warning(f"스토리지 삭제 시도 {attempt + 1} 실패 ({key}): {e.__cause__ or e}")
                if attempt < self.delete_attempts - 1:
                    self._sleep(self.retry_delay)

        logger.error(f"❌ 스토리지 삭제 최종 실패, 고아 객체로 기록: {key}")
        self.registry.record(key, reason)
        return False

    def record_orphan(self, key, reason):
        """문서 저장 실패 등으로 참조를 잃은 객체 기록 (동기 삭제는 하지 않음)"""
        return self.registry.record(key, reason)

    # ==== 주기 정리 ====

    def reconcile(self, stores, prefix=None, grace_seconds=None, stale_upload_seconds=None, now=None):
        """스토리지와 문서 참조를 비교해 정리"""
        prefix = config.MEDIA_NAMESPACE if prefix is None else prefix
        # 네임스페이스 경계: "root" 가 "root-staging/..." 까지 매칭하지 않도록
        prefix = prefix.rstrip('/') + '/' if prefix.strip('/') else ''
        grace_seconds = config.ORPHAN_GRACE_SECONDS if grace_seconds is None else grace_seconds
        stale_upload_seconds = (
            config.STALE_UPLOAD_SECONDS if stale_upload_seconds is None else stale_upload_seconds
        )
        now = now or datetime.now(timezone.utc)
        report = ReconcileReport()

        live_keys = set()
        for store in stores:
            for document in store.stream():
                live_keys.update(referenced_keys(document))

        # 1. 기록된 고아 객체 재시도
        for orphan in self.registry.pending():
            if orphan.key in live_keys:
                self.registry.mark(orphan, ORPHAN_REFERENCED)
                report.orphans_referenced += 1
                continue
            orphan.attempts += 1
            try:
                self.uploader.delete(orphan.key)
                self.registry.mark(orphan, ORPHAN_DELETED)
                report.orphans_deleted += 1
            except StorageFailure as e:
                logger.warning(f"고아 객체 삭제 실패 ({orphan.key}): {e.__cause__ or e}")
                self.registry.mark_attempt(orphan)
                report.failures += 1

        # 2. 어떤 문서도 참조하지 않는 객체 삭제 (grace 기간 이후)
        cutoff = now - timedelta(seconds=grace_seconds)
        for key, last_modified in list(self.uploader.list_keys(prefix)):
            if key in live_keys or last_modified > cutoff:
                continue
            try:
                self.uploader.delete(key)
                report.unreferenced_deleted += 1
            except StorageFailure as e:
                logger.warning(f"미참조 객체 삭제 실패 ({key}): {e.__cause__ or e}")
                report.failures += 1

        # 3. idle 타임아웃을 넘긴 멀티파트 업로드 abort
        for key, upload_id in list(self.uploader.list_stale_uploads(prefix, stale_upload_seconds, now=now)):
            if self.uploader.abort_upload(key, upload_id):
                report.uploads_aborted += 1
            else:
                report.failures += 1

        logger.info(
            f"🎉 미디어 정리 완료: 고아 {report.orphans_deleted}개, 미참조 {report.unreferenced_deleted}개 삭제, "
            f"멀티파트 {report.uploads_aborted}개 abort, 실패 {report.failures}개"
        )
        return report
