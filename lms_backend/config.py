# lms_backend/config.py

import os


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# 환경변수 설정
SECRET_KEY = os.environ.get('FLASK_SECRET_KEY', 'supersecret')
PORT = int(os.environ.get('PORT', 8080))
MAX_CONTENT_LENGTH = int(os.environ.get('MAX_CONTENT_LENGTH', 500 * 1024 * 1024))  # 500MB

# ==== 오브젝트 스토리지 (DigitalOcean Spaces / S3 호환) ====
SPACES_KEY = os.environ.get('DO_SPACES_KEY', '')
SPACES_SECRET = os.environ.get('DO_SPACES_SECRET', '')
SPACES_REGION = os.environ.get('DO_SPACES_REGION', 'blr1')
SPACES_ENDPOINT = os.environ.get(
    'DO_SPACES_ENDPOINT', f'https://{SPACES_REGION}.digitaloceanspaces.com'
)
BUCKET_NAME = os.environ.get('DO_SPACES_BUCKET', '')
PUBLIC_BASE_URL = os.environ.get('PUBLIC_BASE_URL', '')
OBJECT_ACL = os.environ.get('S3_OBJECT_ACL', 'public-read')

# 업로드 설정
UPLOAD_PART_SIZE = int(os.environ.get('UPLOAD_PART_SIZE', 5 * 1024 * 1024))      # 5MB 파트
MULTIPART_THRESHOLD = int(os.environ.get('MULTIPART_THRESHOLD', 5 * 1024 * 1024))  # 이 크기 미만은 단일 put
UPLOAD_MAX_CONCURRENCY = int(os.environ.get('UPLOAD_MAX_CONCURRENCY', 4))

# 키 네이밍: {MEDIA_NAMESPACE}/{namespace}/{timestamp}-{filename}
MEDIA_NAMESPACE = os.environ.get('MEDIA_NAMESPACE', 'Learning-Management-System')
MEDIA_KEY_TIMESTAMPS = _env_bool('MEDIA_KEY_TIMESTAMPS', True)

# ==== 정리(cleanup) 정책 ====
DELETE_RETRY_ATTEMPTS = int(os.environ.get('DELETE_RETRY_ATTEMPTS', 3))
DELETE_RETRY_DELAY = float(os.environ.get('DELETE_RETRY_DELAY', 1.0))
ORPHAN_SWEEP_ENABLED = _env_bool('ORPHAN_SWEEP_ENABLED', True)
ORPHAN_SWEEP_HOURS = int(os.environ.get('ORPHAN_SWEEP_HOURS', 6))
ORPHAN_GRACE_SECONDS = int(os.environ.get('ORPHAN_GRACE_SECONDS', 3600))
STALE_UPLOAD_SECONDS = int(os.environ.get('STALE_UPLOAD_SECONDS', 86400))

# ==== Firestore 컬렉션 ====
COURSES_COLLECTION = os.environ.get('COURSES_COLLECTION', 'courses')
USERS_COLLECTION = os.environ.get('USERS_COLLECTION', 'users')
ORPHANS_COLLECTION = os.environ.get('ORPHANS_COLLECTION', 'orphaned_objects')


def firebase_credentials():
    """Firebase 서비스 계정 정보 (환경변수에서 읽음)"""
    return {
        "type": os.environ.get("type", "service_account"),
        "project_id": os.environ["project_id"],
        "private_key_id": os.environ.get("private_key_id", ""),
        "private_key": os.environ["private_key"].replace('\\n', '\n'),
        "client_email": os.environ["client_email"],
        "client_id": os.environ.get("client_id", ""),
        "auth_uri": os.environ.get("auth_uri", "https://accounts.google.com/o/oauth2/auth"),
        "token_uri": os.environ.get("token_uri", "https://oauth2.googleapis.com/token"),
        "auth_provider_x509_cert_url": os.environ.get(
            "auth_provider_x509_cert_url", "https://www.googleapis.com/oauth2/v1/certs"
        ),
        "client_x509_cert_url": os.environ.get("client_x509_cert_url", ""),
    }
