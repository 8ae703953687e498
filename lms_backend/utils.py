# lms_backend/utils.py

import re
import time
from pathlib import Path


def safe_filename(filename):
    """스토리지 키에 쓸 수 있도록 파일명 정리 (확장자는 유지)"""
    name = Path(filename or '').name
    stem, ext = Path(name).stem, Path(name).suffix.lower()
    safe_stem = re.sub(r'[^\w\-가-힣]', '_', stem).strip('_')
    safe_ext = re.sub(r'[^\w.]', '', ext)
    return f"{safe_stem or 'file'}{safe_ext}"


def measure_stream(stream):
    """스트림 크기 측정 후 처음 위치로 복원"""
    stream.seek(0, 2)  # 파일 끝으로 이동
    size = stream.tell()
    stream.seek(0)  # 파일 처음으로 복원
    return size


def epoch_millis():
    return int(time.time() * 1000)
