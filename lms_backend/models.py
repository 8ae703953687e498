# lms_backend/models.py
"""
미디어 라이프사이클 값 타입

- ObjectReference: 문서 필드에 저장되는 {key, url}
- UploadInput: 경계에서 검증된 업로드 입력
- PartSpec / plan_parts: 멀티파트 분할
- UploadSession: 멀티파트 업로드 1건의 프로세스 로컬 상태
- FieldSelector: 썸네일 / 아바타 / 특정 강의 영상 지정
"""

import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from . import config
from .errors import InvalidInput
from .utils import measure_stream, safe_filename


@dataclass(frozen=True)
class ObjectReference:
    key: str = ''
    url: str = ''

    @property
    def is_empty(self) -> bool:
        return not self.key

    def to_dict(self) -> Dict[str, str]:
        return {'key': self.key, 'url': self.url}

    @classmethod
    def from_dict(cls, data) -> 'ObjectReference':
        if not data:
            return cls()
        return cls(key=data.get('key') or '', url=data.get('url') or '')


EMPTY_REFERENCE = ObjectReference()


@dataclass
class UploadInput:
    byte_source: object
    declared_size: int
    original_name: str
    content_type: Optional[str] = None

    def validate(self) -> None:
        if self.byte_source is None:
            raise InvalidInput('파일이 필요합니다')
        if not isinstance(self.declared_size, int) or self.declared_size <= 0:
            raise InvalidInput('빈 파일은 업로드할 수 없습니다')
        if not self.original_name or not self.original_name.strip():
            raise InvalidInput('유효한 파일명이 필요합니다')

    @classmethod
    def from_file_storage(cls, file) -> 'UploadInput':
        """werkzeug FileStorage -> UploadInput (검증 포함)"""
        if file is None or not file.filename:
            raise InvalidInput('파일이 필요합니다')
        upload = cls(
            byte_source=file.stream,
            declared_size=measure_stream(file.stream),
            original_name=safe_filename(file.filename),
            content_type=file.mimetype or None,
        )
        upload.validate()
        return upload


@dataclass(frozen=True)
class PartSpec:
    part_number: int
    offset: int
    length: int


def plan_parts(total_size: int, part_size: int) -> List[PartSpec]:
    """total_size 바이트를 part_size 단위 파트로 분할 (마지막 파트는 나머지)"""
    if total_size <= 0:
        raise InvalidInput('업로드 크기는 0보다 커야 합니다')
    if part_size <= 0:
        raise InvalidInput('파트 크기는 0보다 커야 합니다')

    parts = []
    for offset in range(0, total_size, part_size):
        parts.append(PartSpec(
            part_number=offset // part_size + 1,
            offset=offset,
            length=min(part_size, total_size - offset),
        ))
    return parts


@dataclass
class UploadSession:
    upload_id: str
    key: str
    part_size: int
    total_size: int
    bytes_sent: int = 0
    parts: Dict[int, str] = field(default_factory=dict)

    def record_part(self, part_number: int, etag: str, size: int) -> None:
        if part_number in self.parts:
            raise ValueError(f"파트 번호 중복: {part_number}")
        self.parts[part_number] = etag
        self.bytes_sent += size

    def completed_parts(self) -> List[Dict[str, object]]:
        return [
            {'PartNumber': number, 'ETag': self.parts[number]}
            for number in sorted(self.parts)
        ]


@dataclass(frozen=True)
class FieldSelector:
    collection: str
    field: str
    namespace: str
    lecture_id: Optional[str] = None

    @classmethod
    def thumbnail(cls) -> 'FieldSelector':
        return cls(config.COURSES_COLLECTION, 'thumbnail', 'thumbnails')

    @classmethod
    def avatar(cls) -> 'FieldSelector':
        return cls(config.USERS_COLLECTION, 'avatar', 'avatars')

    @classmethod
    def lecture(cls, lecture_id: str) -> 'FieldSelector':
        return cls(config.COURSES_COLLECTION, 'lectures', 'lectures', lecture_id=lecture_id)

    @property
    def is_lecture(self) -> bool:
        return self.lecture_id is not None

    def describe(self) -> str:
        if self.is_lecture:
            return f"{self.collection}.lectures[{self.lecture_id}]"
        return f"{self.collection}.{self.field}"


def new_lecture(title, description, reference=EMPTY_REFERENCE):
    return {
        'lecture_id': uuid.uuid4().hex,
        'title': title,
        'description': description,
        'lecture': reference.to_dict(),
    }


def find_lecture_index(document, lecture_id):
    for index, lecture in enumerate(document.get('lectures') or []):
        if lecture.get('lecture_id') == lecture_id:
            return index
    return None


def referenced_keys(document) -> List[str]:
    """문서가 참조하는 모든 스토리지 키 (썸네일, 아바타, 강의 영상)"""
    keys = []
    for field_name in ('thumbnail', 'avatar'):
        reference = ObjectReference.from_dict(document.get(field_name))
        if not reference.is_empty:
            keys.append(reference.key)
    for lecture in document.get('lectures') or []:
        reference = ObjectReference.from_dict(lecture.get('lecture'))
        if not reference.is_empty:
            keys.append(reference.key)
    return keys
