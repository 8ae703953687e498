# lms_backend/database.py

import logging

import firebase_admin
from firebase_admin import credentials, firestore

from .config import firebase_credentials

logger = logging.getLogger(__name__)


def init_firestore():
    """Firebase Admin SDK 초기화 후 Firestore 클라이언트 반환 (프로세스당 1회)"""
    try:
        if not firebase_admin._apps:
            cred = credentials.Certificate(firebase_credentials())
            firebase_admin.initialize_app(cred)
        db = firestore.client()
        logger.info("✅ Firestore 초기화 완료")
        return db
    except Exception as e:
        logger.error(f"❌ Firestore 초기화 실패: {e}")
        raise


class DocumentStore:
    """
    코어가 사용하는 문서 저장소 계약

    문서는 dict 이며 'id' 키에 문서 ID 를 담는다.
    """

    def find_by_id(self, doc_id):
        raise NotImplementedError

    def save(self, document):
        raise NotImplementedError

    def update_one(self, doc_id, patch):
        raise NotImplementedError

    def remove_by_id(self, doc_id):
        raise NotImplementedError

    def mutate(self, doc_id, change):
        """
        문서를 다시 읽어 change(document) 를 적용하고 저장 (원자적 read-modify-write)

        문서가 없으면 change 를 호출하지 않고 None 을 반환한다.
        """
        raise NotImplementedError

    def find_by_field(self, field_name, value):
        """field_name == value 인 문서 목록"""
        raise NotImplementedError

    def ping(self):
        """저장소 연결 확인 (헬스체크용)"""
        raise NotImplementedError

    def stream(self):
        """전체 문서 순회 (정리 작업 전용)"""
        raise NotImplementedError


class FirestoreDocumentStore(DocumentStore):
    def __init__(self, db, collection_name):
        self.collection_name = collection_name
        self._db = db
        self._collection = db.collection(collection_name)

    @staticmethod
    def _to_document(snapshot):
        data = snapshot.to_dict() or {}
        data['id'] = snapshot.id
        return data

    def find_by_id(self, doc_id):
        """문서 조회 (없으면 None)"""
        snapshot = self._collection.document(doc_id).get()
        return self._to_document(snapshot) if snapshot.exists else None

    def save(self, document):
        """문서 전체 저장 (덮어쓰기)"""
        data = {k: v for k, v in document.items() if k != 'id'}
        self._collection.document(document['id']).set(data)

    def update_one(self, doc_id, patch):
        """문서 일부 필드 업데이트"""
        self._collection.document(doc_id).update(patch)

    def remove_by_id(self, doc_id):
        self._collection.document(doc_id).delete()

    def stream(self):
        for snapshot in self._collection.stream():
            yield self._to_document(snapshot)

    def mutate(self, doc_id, change):
        """트랜잭션 안에서 최신 문서를 읽고 change 적용 후 저장"""
        ref = self._collection.document(doc_id)

        @firestore.transactional
        def apply(transaction):
            snapshot = ref.get(transaction=transaction)
            if not snapshot.exists:
                return None
            document = self._to_document(snapshot)
            change(document)
            transaction.set(ref, {k: v for k, v in document.items() if k != 'id'})
            return document

        return apply(self._db.transaction())

    def find_by_field(self, field_name, value):
        return [
            self._to_document(snapshot)
            for snapshot in self._collection.where(field_name, '==', value).stream()
        ]

    def ping(self):
        self._collection.limit(1).get()
