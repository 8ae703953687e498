# lms_backend/errors.py
"""
미디어 라이프사이클 오류 분류

HTTP 계층은 status_code 만 보고 응답 코드를 결정한다.
코어는 HTTP 를 알지 못한다.
"""


class MediaError(Exception):
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'success': False, 'error': self.message}


class InvalidInput(MediaError):
    """파일 누락, 빈 본문 등 잘못된 입력"""
    status_code = 400


class FieldOccupied(InvalidInput):
    """이미 미디어가 있는 필드에 attach 시도 (replace 를 써야 함)"""


class NotFound(MediaError):
    """문서 또는 하위 레코드(강의) 없음"""
    status_code = 404


class StorageFailure(MediaError):
    """스토리지 백엔드 호출 실패 (멀티파트 세션은 이미 abort 됨)"""
    status_code = 500


class PersistFailure(MediaError):
    """문서 저장 실패"""
    status_code = 500


class OperationCancelled(MediaError):
    """DocumentPersist 이전에 호출자가 작업을 취소함"""
    status_code = 499
