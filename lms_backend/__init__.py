# lms_backend/__init__.py
"""
Learning Management System - 미디어 라이프사이클 백엔드

코스 썸네일, 강의 영상, 사용자 아바타를 오브젝트 스토리지(S3 호환)에 올리고
Firestore 문서의 {key, url} 참조와 일관되게 유지한다.

주요 모듈:
- app: Flask 앱 생성 및 헬스체크
- config: 설정 관리
- errors: 오류 분류 (HTTP 상태 코드 매핑)
- models: ObjectReference, UploadInput, 파트 분할, FieldSelector
- storage: S3 멀티파트 업로드 클라이언트
- database: Firestore 문서 저장소
- lifecycle: attach / replace / release 코디네이터
- cleanup: 삭제 재시도, 고아 객체 기록 및 정리
- scheduler: 백그라운드 정리 작업 스케줄링
- utils: 공통 유틸리티 함수
- api_routes: REST API 엔드포인트
"""

# 패키지 정보
__version__ = "1.0.0"
__description__ = "Learning Management System media lifecycle backend"
