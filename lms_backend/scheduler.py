# lms_backend/scheduler.py

import atexit
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from . import config

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(
    timezone='UTC',
    job_defaults={
        'coalesce': True,
        'max_instances': 1
    }
)


def run_reconcile(cleanup, stores):
    """고아 객체 정리 작업 (스케줄러에서 호출, 예외를 올리지 않음)"""
    try:
        logger.info("🔄 백그라운드 미디어 정리 작업 시작...")
        return cleanup.reconcile(stores)
    except Exception as e:
        logger.error(f"❌ 미디어 정리 작업 중 오류: {e}")
        return None


def start_scheduler(cleanup, stores, interval_hours=None):
    """스케줄러 시작"""
    if not config.ORPHAN_SWEEP_ENABLED:
        logger.info("미디어 정리 작업이 비활성화되어 있습니다 (ORPHAN_SWEEP_ENABLED)")
        return False

    try:
        scheduler.add_job(
            func=run_reconcile,
            args=(cleanup, list(stores)),
            trigger=IntervalTrigger(hours=interval_hours or config.ORPHAN_SWEEP_HOURS),
            id='reconcile_media',
            name='미디어 고아 객체 정리',
            replace_existing=True
        )

        if not scheduler.running:
            scheduler.start()
            # 앱 종료 시 스케줄러도 함께 종료
            atexit.register(lambda: scheduler.shutdown(wait=False))
        logger.info("🚀 백그라운드 스케줄러가 시작되었습니다.")
        return True

    except Exception as e:
        logger.error(f"❌ 스케줄러 시작 실패: {e}")
        return False
