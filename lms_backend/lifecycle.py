# lms_backend/lifecycle.py
"""
미디어 라이프사이클 코디네이터

스토리지 객체와 문서 참조를 함께 관리한다.

- attach: 빈 필드에 새 미디어 연결 (업로드 -> 저장)
- replace: 업로드 -> 새 참조 저장 -> 기존 객체 삭제 (이 순서를 바꾸지 말 것)
- release: 스토리지 객체 삭제 -> 소유 레코드(강의 또는 문서) 삭제

문서가 기준(authoritative)이다. 스토리지 삭제 실패는 문서 변경을 막지 않고
고아 객체로 기록된다. 업로드 실패는 호출자에게 그대로 전달되며 문서는 변경되지 않는다.
"""

import logging
from enum import Enum

from .errors import (
    FieldOccupied,
    InvalidInput,
    NotFound,
    OperationCancelled,
    PersistFailure,
)
from .models import (
    EMPTY_REFERENCE,
    FieldSelector,
    ObjectReference,
    find_lecture_index,
    new_lecture,
    referenced_keys,
)
from .storage import build_object_key

logger = logging.getLogger(__name__)


class OperationState(str, Enum):
    START = 'start'
    STORAGE_OP = 'storage_op'
    DOCUMENT_PERSIST = 'document_persist'
    STORAGE_CLEANUP = 'storage_cleanup'
    DONE = 'done'
    FAILED = 'failed'


_TRANSITIONS = {
    OperationState.START: {OperationState.STORAGE_OP},
    OperationState.STORAGE_OP: {OperationState.DOCUMENT_PERSIST, OperationState.FAILED},
    OperationState.DOCUMENT_PERSIST: {
        OperationState.STORAGE_CLEANUP, OperationState.DONE, OperationState.FAILED,
    },
    OperationState.STORAGE_CLEANUP: {OperationState.DONE},
    OperationState.DONE: set(),
    OperationState.FAILED: set(),
}


class LifecycleOperation:
    """attach / replace / release 1회의 상태 추적"""

    def __init__(self, name, target):
        self.name = name
        self.target = target
        self.state = OperationState.START
        self.reason = None
        self.history = [OperationState.START]

    @property
    def finished(self):
        return self.state in (OperationState.DONE, OperationState.FAILED)

    def advance(self, state):
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"잘못된 상태 전이: {self.state.value} -> {state.value} ({self.name})")
        logger.debug(f"[{self.name}] {self.target}: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def fail(self, reason):
        self.advance(OperationState.FAILED)
        self.reason = reason
        logger.error(f"❌ [{self.name}] {self.target} 실패: {reason}")


class MediaLifecycle:
    def __init__(self, uploader, stores, cleanup, key_builder=build_object_key):
        self.uploader = uploader
        self.stores = stores
        self.cleanup = cleanup
        self.key_builder = key_builder

    # ==== 조회 헬퍼 ====

    def _store(self, selector):
        try:
            return self.stores[selector.collection]
        except KeyError:
            raise InvalidInput(f"알 수 없는 컬렉션입니다: {selector.collection}") from None

    def _load(self, store, doc_id):
        document = store.find_by_id(doc_id)
        if document is None:
            raise NotFound(f"문서를 찾을 수 없습니다: {store.collection_name}/{doc_id}")
        return document

    @staticmethod
    def _lecture_index(document, selector):
        index = find_lecture_index(document, selector.lecture_id)
        if index is None:
            raise NotFound(f"강의를 찾을 수 없습니다: {selector.lecture_id}")
        return index

    def _current_reference(self, document, selector):
        if selector.is_lecture:
            lecture = document['lectures'][self._lecture_index(document, selector)]
            return ObjectReference.from_dict(lecture.get('lecture'))
        return ObjectReference.from_dict(document.get(selector.field))

    # ==== 단계 ====

    def _upload(self, op, namespace, upload, cancel):
        key = self.key_builder(namespace, upload.original_name)
        op.advance(OperationState.STORAGE_OP)
        try:
            reference = self.uploader.upload(upload, key, cancel=cancel)
        except Exception as e:
            op.fail(str(e))
            raise

        if cancel is not None and cancel.is_set():
            # 완료된 객체가 문서 참조 없이 남지 않도록 삭제
            self.cleanup.delete_superseded(reference.key, f"cancelled:{op.name}:{op.target}")
            op.fail('cancelled')
            raise OperationCancelled(f"작업이 취소되었습니다: {op.target}")
        return reference

    def _persist(self, op, write, orphan_key=None):
        op.advance(OperationState.DOCUMENT_PERSIST)
        try:
            write()
        except Exception as e:
            op.fail(f"persist: {e}")
            if orphan_key:
                self.cleanup.record_orphan(orphan_key, f"persist_failed:{op.name}:{op.target}")
            if isinstance(e, NotFound):
                raise
            raise PersistFailure(f"문서 저장 실패: {op.target}") from e

    def _mutate_lectures(self, store, course_id, change):
        """최신 코스 문서에 강의 변경만 적용 (형제 강의는 저장 시점의 상태 유지)"""
        def apply(document):
            document.setdefault('lectures', [])
            change(document)
            document['number_of_lectures'] = len(document['lectures'])

        if store.mutate(course_id, apply) is None:
            raise NotFound(f"문서를 찾을 수 없습니다: {store.collection_name}/{course_id}")

    def _write_reference(self, store, document, selector, reference):
        if selector.is_lecture:
            def set_video(latest):
                index = self._lecture_index(latest, selector)
                latest['lectures'][index]['lecture'] = reference.to_dict()

            def write():
                self._mutate_lectures(store, document['id'], set_video)
        else:
            def write():
                document[selector.field] = reference.to_dict()
                store.update_one(document['id'], {selector.field: reference.to_dict()})
        return write

    # ==== 공개 연산 ====

    def attach(self, doc_id, selector, upload, cancel=None):
        """빈 필드에 새 미디어 연결"""
        upload.validate()
        store = self._store(selector)
        document = self._load(store, doc_id)
        current = self._current_reference(document, selector)
        if not current.is_empty:
            raise FieldOccupied(f"이미 미디어가 있습니다. 교체(replace)를 사용하세요: {selector.describe()}")

        op = LifecycleOperation('attach', f"{doc_id}:{selector.describe()}")
        reference = self._upload(op, selector.namespace, upload, cancel)
        self._persist(op, self._write_reference(store, document, selector, reference), orphan_key=reference.key)
        op.advance(OperationState.DONE)

        logger.info(f"✅ 미디어 연결 완료: {op.target} -> {reference.key}")
        return reference

    def replace(self, doc_id, selector, upload, cancel=None):
        """새 객체 업로드 -> 새 참조 저장 -> 기존 객체 삭제"""
        upload.validate()
        store = self._store(selector)
        document = self._load(store, doc_id)
        old = self._current_reference(document, selector)
        if old.is_empty:
            raise InvalidInput(f"교체할 미디어가 없습니다. 연결(attach)을 사용하세요: {selector.describe()}")

        op = LifecycleOperation('replace', f"{doc_id}:{selector.describe()}")
        reference = self._upload(op, selector.namespace, upload, cancel)
        self._persist(op, self._write_reference(store, document, selector, reference), orphan_key=reference.key)

        op.advance(OperationState.STORAGE_CLEANUP)
        if old.key != reference.key:
            self.cleanup.delete_superseded(old.key, f"superseded:{op.target}")
        op.advance(OperationState.DONE)

        logger.info(f"✅ 미디어 교체 완료: {op.target} ({old.key} -> {reference.key})")
        return reference

    def release(self, doc_id, selector):
        """
        소유 레코드 삭제

        강의 selector 면 해당 강의만, 그 외에는 문서 전체를 삭제한다.
        """
        store = self._store(selector)
        document = self._load(store, doc_id)
        if selector.is_lecture:
            return self._release_lecture(store, document, selector)

        op = LifecycleOperation('release', f"{doc_id}:{store.collection_name}")
        keys = referenced_keys(document)
        op.advance(OperationState.STORAGE_OP)
        for key in keys:
            self.cleanup.delete_superseded(key, f"released:{op.target}")

        self._persist(op, lambda: store.remove_by_id(doc_id))
        op.advance(OperationState.DONE)

        logger.info(f"✅ 문서 삭제 완료: {op.target} (객체 {len(keys)}개)")
        return keys

    def _release_lecture(self, store, document, selector):
        index = self._lecture_index(document, selector)
        lecture = document['lectures'][index]
        reference = ObjectReference.from_dict(lecture.get('lecture'))

        op = LifecycleOperation('release', f"{document['id']}:{selector.describe()}")
        op.advance(OperationState.STORAGE_OP)
        if not reference.is_empty:
            self.cleanup.delete_superseded(reference.key, f"released:{op.target}")

        def remove(latest):
            index_now = find_lecture_index(latest, selector.lecture_id)
            if index_now is not None:
                del latest['lectures'][index_now]

        self._persist(op, lambda: self._mutate_lectures(store, document['id'], remove))
        op.advance(OperationState.DONE)

        logger.info(f"✅ 강의 삭제 완료: {op.target}")
        return [reference.key] if not reference.is_empty else []

    def add_lecture(self, course_id, title, description, upload=None, cancel=None):
        """강의 추가 (영상이 있으면 먼저 업로드)"""
        if not title or not description:
            raise InvalidInput('title 과 description 이 모두 필요합니다')
        if upload is not None:
            upload.validate()

        selector = FieldSelector.lecture(lecture_id='')
        store = self._store(selector)
        self._load(store, course_id)

        op = LifecycleOperation('add_lecture', f"{course_id}:{selector.collection}.lectures")
        if upload is not None:
            reference = self._upload(op, selector.namespace, upload, cancel)
        else:
            op.advance(OperationState.STORAGE_OP)
            reference = EMPTY_REFERENCE

        lecture = new_lecture(title, description, reference)

        def append(latest):
            latest['lectures'].append(lecture)

        self._persist(
            op, lambda: self._mutate_lectures(store, course_id, append), orphan_key=reference.key or None
        )
        op.advance(OperationState.DONE)

        logger.info(f"✅ 강의 추가 완료: {course_id} -> {lecture['lecture_id']}")
        return lecture
