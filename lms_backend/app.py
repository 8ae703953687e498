# lms_backend/app.py (메인 애플리케이션)
from datetime import datetime
import logging

from flask import Flask, jsonify

from . import config
from .api_routes import media_bp
from .cleanup import CleanupPolicy, OrphanRegistry
from .database import FirestoreDocumentStore, init_firestore
from .lifecycle import MediaLifecycle
from .scheduler import scheduler, start_scheduler
from .storage import ChunkedUploader, create_s3_client

logger = logging.getLogger(__name__)


def build_lifecycle(db=None, s3_client=None):
    """프로세스 전역 클라이언트로 코디네이터 구성 (시작 시 1회)"""
    db = db or init_firestore()
    s3_client = s3_client or create_s3_client()

    uploader = ChunkedUploader(s3_client, config.BUCKET_NAME)
    stores = {
        config.COURSES_COLLECTION: FirestoreDocumentStore(db, config.COURSES_COLLECTION),
        config.USERS_COLLECTION: FirestoreDocumentStore(db, config.USERS_COLLECTION),
    }
    registry = OrphanRegistry(FirestoreDocumentStore(db, config.ORPHANS_COLLECTION))
    cleanup = CleanupPolicy(uploader, registry)
    return MediaLifecycle(uploader, stores, cleanup)


def create_app(lifecycle=None):
    """Flask 앱 생성"""
    app = Flask(__name__)
    app.secret_key = config.SECRET_KEY
    app.config['MAX_CONTENT_LENGTH'] = config.MAX_CONTENT_LENGTH

    app.extensions['media_lifecycle'] = lifecycle or build_lifecycle()

    # Blueprint 등록
    app.register_blueprint(media_bp, url_prefix='/api')

    # 헬스체크
    @app.route('/health', methods=['GET'])
    def health_check():
        """서비스 상태 확인"""
        media = app.extensions['media_lifecycle']

        try:
            for store in media.stores.values():
                store.ping()
            firestore_status = 'healthy'
        except Exception:
            firestore_status = 'unhealthy'

        try:
            media.uploader.head_bucket()
            s3_status = 'healthy'
        except Exception:
            s3_status = 'unhealthy'

        overall_status = 'healthy' if (firestore_status == 'healthy' and s3_status == 'healthy') else 'unhealthy'

        return jsonify({
            'status': overall_status,
            'timestamp': datetime.utcnow().isoformat(),
            'services': {
                'firestore': firestore_status,
                's3': s3_status,
                'scheduler': scheduler.running
            }
        }), 200 if overall_status == 'healthy' else 503

    return app


def main():
    # 로깅 설정
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    app = create_app()
    media = app.extensions['media_lifecycle']

    # 스케줄러 시작
    start_scheduler(media.cleanup, media.stores.values())

    app.logger.info("✅ 앱 초기화 완료")
    app.run(host="0.0.0.0", port=config.PORT, debug=False)


if __name__ == "__main__":
    main()
