# lms_backend/api_routes.py
from flask import Blueprint, current_app, jsonify, request
import logging

from .errors import MediaError
from .models import FieldSelector, UploadInput

logger = logging.getLogger(__name__)

media_bp = Blueprint('media', __name__)


def _lifecycle():
    return current_app.extensions['media_lifecycle']


def _upload_from_request(field_name):
    """요청의 파일을 UploadInput 으로 변환 (검증 실패 시 InvalidInput)"""
    file = request.files.get(field_name) or request.files.get('file')
    return UploadInput.from_file_storage(file)


@media_bp.errorhandler(MediaError)
def handle_media_error(e):
    if e.status_code >= 500:
        logger.error(f"미디어 작업 실패 ({request.path}): {e}")
    else:
        logger.warning(f"미디어 요청 거부 ({request.path}): {e}")
    return jsonify(e.to_dict()), e.status_code


# ==== 강의(course) 썸네일 ====

@media_bp.route('/courses/<course_id>/thumbnail', methods=['POST'])
def attach_course_thumbnail(course_id):
    """코스 썸네일 등록"""
    upload = _upload_from_request('thumbnail')
    reference = _lifecycle().attach(course_id, FieldSelector.thumbnail(), upload)
    return jsonify({
        'success': True,
        'message': '썸네일이 등록되었습니다.',
        'thumbnail': reference.to_dict()
    }), 201


@media_bp.route('/courses/<course_id>/thumbnail', methods=['PUT'])
def replace_course_thumbnail(course_id):
    """코스 썸네일 교체"""
    upload = _upload_from_request('thumbnail')
    reference = _lifecycle().replace(course_id, FieldSelector.thumbnail(), upload)
    return jsonify({
        'success': True,
        'message': '썸네일이 교체되었습니다.',
        'thumbnail': reference.to_dict()
    }), 200


@media_bp.route('/courses/<course_id>', methods=['DELETE'])
def remove_course(course_id):
    """코스 삭제 (썸네일, 강의 영상 포함)"""
    keys = _lifecycle().release(course_id, FieldSelector.thumbnail())
    return jsonify({
        'success': True,
        'message': '코스가 삭제되었습니다.',
        'released_keys': keys
    }), 200


# ==== 강의 영상 ====

@media_bp.route('/courses/<course_id>/lectures', methods=['POST'])
def add_lecture(course_id):
    """강의 추가 (영상은 선택)"""
    title = request.form.get('title', '').strip()
    description = request.form.get('description', '').strip()

    upload = None
    if request.files.get('lecture') or request.files.get('file'):
        upload = _upload_from_request('lecture')

    lecture = _lifecycle().add_lecture(course_id, title, description, upload)
    return jsonify({
        'success': True,
        'message': '강의가 추가되었습니다.',
        'lecture': lecture
    }), 201


@media_bp.route('/courses/<course_id>/lectures/<lecture_id>/video', methods=['POST'])
def attach_lecture_video(course_id, lecture_id):
    """강의 영상 등록"""
    upload = _upload_from_request('lecture')
    reference = _lifecycle().attach(course_id, FieldSelector.lecture(lecture_id), upload)
    return jsonify({
        'success': True,
        'message': '강의 영상이 등록되었습니다.',
        'lecture_id': lecture_id,
        'lecture': reference.to_dict()
    }), 201


@media_bp.route('/courses/<course_id>/lectures/<lecture_id>/video', methods=['PUT'])
def replace_lecture_video(course_id, lecture_id):
    """강의 영상 교체"""
    upload = _upload_from_request('lecture')
    reference = _lifecycle().replace(course_id, FieldSelector.lecture(lecture_id), upload)
    return jsonify({
        'success': True,
        'message': '강의 영상이 교체되었습니다.',
        'lecture_id': lecture_id,
        'lecture': reference.to_dict()
    }), 200


@media_bp.route('/courses/<course_id>/lectures/<lecture_id>', methods=['DELETE'])
def remove_lecture(course_id, lecture_id):
    """강의 삭제"""
    keys = _lifecycle().release(course_id, FieldSelector.lecture(lecture_id))
    return jsonify({
        'success': True,
        'message': '강의가 삭제되었습니다.',
        'lecture_id': lecture_id,
        'released_keys': keys
    }), 200


# ==== 사용자 아바타 ====

@media_bp.route('/users/<user_id>/avatar', methods=['POST'])
def attach_user_avatar(user_id):
    """아바타 등록"""
    upload = _upload_from_request('avatar')
    reference = _lifecycle().attach(user_id, FieldSelector.avatar(), upload)
    return jsonify({
        'success': True,
        'message': '아바타가 등록되었습니다.',
        'avatar': reference.to_dict()
    }), 201


@media_bp.route('/users/<user_id>/avatar', methods=['PUT'])
def replace_user_avatar(user_id):
    """아바타 교체"""
    upload = _upload_from_request('avatar')
    reference = _lifecycle().replace(user_id, FieldSelector.avatar(), upload)
    return jsonify({
        'success': True,
        'message': '아바타가 교체되었습니다.',
        'avatar': reference.to_dict()
    }), 200


@media_bp.route('/users/<user_id>', methods=['DELETE'])
def remove_user(user_id):
    """사용자 삭제 (아바타 포함)"""
    keys = _lifecycle().release(user_id, FieldSelector.avatar())
    return jsonify({
        'success': True,
        'message': '사용자가 삭제되었습니다.',
        'released_keys': keys
    }), 200
