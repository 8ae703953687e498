import io

import pytest

from conftest import CDN, PART
from lms_backend.app import create_app


@pytest.fixture
def client(lifecycle):
    app = create_app(lifecycle=lifecycle)
    app.config['TESTING'] = True
    return app.test_client()


def file_form(field, data, name, **extra):
    form = {field: (io.BytesIO(data), name)}
    form.update(extra)
    return form


def test_health_reports_backends(client):
    response = client.get('/health')
    body = response.get_json()
    assert response.status_code == 200
    assert body['status'] == 'healthy'
    assert body['services']['s3'] == 'healthy'


def test_health_pings_document_stores_without_scanning(client, courses, monkeypatch):
    def full_scan():
        raise AssertionError('health check must not stream a collection')

    monkeypatch.setattr(courses, 'stream', full_scan)
    assert client.get('/health').status_code == 200

    courses.unreachable = True
    response = client.get('/health')
    assert response.status_code == 503
    assert response.get_json()['services']['firestore'] == 'unhealthy'


def test_health_is_503_when_bucket_unreachable(client, s3):
    s3.fail('head_bucket')
    response = client.get('/health')
    assert response.status_code == 503
    assert response.get_json()['services']['s3'] == 'unhealthy'


# ==== course thumbnail ====

def test_attach_thumbnail(client, courses):
    response = client.post('/api/courses/course-2/thumbnail',
                           data=file_form('thumbnail', b'png-bytes', 'cover.png'),
                           content_type='multipart/form-data')

    body = response.get_json()
    assert response.status_code == 201
    assert body['success'] is True
    assert body['thumbnail'] == {'key': 'lms/thumbnails/cover.png', 'url': f'{CDN}/lms/thumbnails/cover.png'}
    assert courses.documents['course-2']['thumbnail'] == body['thumbnail']


def test_attach_thumbnail_accepts_generic_file_field(client):
    response = client.post('/api/courses/course-2/thumbnail',
                           data=file_form('file', b'png-bytes', 'cover.png'),
                           content_type='multipart/form-data')
    assert response.status_code == 201


def test_attach_to_occupied_thumbnail_is_400(client):
    response = client.post('/api/courses/course-1/thumbnail',
                           data=file_form('thumbnail', b'png-bytes', 'cover.png'),
                           content_type='multipart/form-data')
    assert response.status_code == 400
    assert response.get_json()['success'] is False


def test_replace_thumbnail_deletes_old_object(client, courses, s3):
    response = client.put('/api/courses/course-1/thumbnail',
                          data=file_form('thumbnail', b'new-bytes', 'new.jpg'),
                          content_type='multipart/form-data')

    assert response.status_code == 200
    assert courses.documents['course-1']['thumbnail']['key'] == 'lms/thumbnails/new.jpg'
    assert 'lms/thumbnails/old.jpg' not in s3.objects


def test_missing_file_is_400(client, events):
    response = client.put('/api/courses/course-1/thumbnail', data={}, content_type='multipart/form-data')
    assert response.status_code == 400
    assert 'error' in response.get_json()
    assert events == []


def test_unknown_course_is_404(client):
    response = client.put('/api/courses/nope/thumbnail',
                          data=file_form('thumbnail', b'x', 'x.jpg'),
                          content_type='multipart/form-data')
    assert response.status_code == 404


def test_storage_failure_is_500_and_document_unchanged(client, courses, s3):
    s3.fail('put_object')
    before = courses.find_by_id('course-1')

    response = client.put('/api/courses/course-1/thumbnail',
                          data=file_form('thumbnail', b'x', 'x.jpg'),
                          content_type='multipart/form-data')

    assert response.status_code == 500
    assert courses.find_by_id('course-1') == before


def test_persist_failure_is_500(client, courses):
    courses.fail_writes = True
    response = client.put('/api/courses/course-1/thumbnail',
                          data=file_form('thumbnail', b'x', 'x.jpg'),
                          content_type='multipart/form-data')
    assert response.status_code == 500


def test_delete_course_releases_all_media(client, courses, s3):
    response = client.delete('/api/courses/course-1')

    body = response.get_json()
    assert response.status_code == 200
    assert sorted(body['released_keys']) == [
        'lms/lectures/a.mp4', 'lms/lectures/b.mp4', 'lms/thumbnails/old.jpg',
    ]
    assert 'course-1' not in courses.documents


# ==== lectures ====

def test_add_lecture_with_video(client, courses):
    response = client.post('/api/courses/course-2/lectures',
                           data=file_form('lecture', b'v' * (PART * 2 + 1), 'intro.mp4',
                                          title='Intro', description='Welcome'),
                           content_type='multipart/form-data')

    body = response.get_json()
    assert response.status_code == 201
    assert body['lecture']['title'] == 'Intro'
    assert body['lecture']['lecture']['key'] == 'lms/lectures/intro.mp4'
    assert courses.documents['course-2']['number_of_lectures'] == 1


def test_add_lecture_without_video(client, courses):
    response = client.post('/api/courses/course-1/lectures',
                           data={'title': 'Reading', 'description': 'No video'},
                           content_type='multipart/form-data')
    assert response.status_code == 201
    assert response.get_json()['lecture']['lecture'] == {'key': '', 'url': ''}


def test_add_lecture_without_title_is_400(client):
    response = client.post('/api/courses/course-1/lectures',
                           data={'description': 'No title'},
                           content_type='multipart/form-data')
    assert response.status_code == 400


def test_attach_and_replace_lecture_video(client, courses, s3):
    response = client.post('/api/courses/course-1/lectures/lec-c/video',
                           data=file_form('lecture', b'q' * 10, 'quiz.mp4'),
                           content_type='multipart/form-data')
    assert response.status_code == 201

    response = client.put('/api/courses/course-1/lectures/lec-c/video',
                          data=file_form('lecture', b'q' * 20, 'quiz2.mp4'),
                          content_type='multipart/form-data')
    assert response.status_code == 200
    assert response.get_json()['lecture']['key'] == 'lms/lectures/quiz2.mp4'
    assert 'lms/lectures/quiz.mp4' not in s3.objects
    assert courses.documents['course-1']['lectures'][2]['lecture_id'] == 'lec-c'


def test_unknown_lecture_is_404(client):
    response = client.delete('/api/courses/course-1/lectures/lec-z')
    assert response.status_code == 404


def test_delete_lecture(client, courses, s3):
    response = client.delete('/api/courses/course-1/lectures/lec-b')

    assert response.status_code == 200
    assert response.get_json()['released_keys'] == ['lms/lectures/b.mp4']
    assert [lecture['lecture_id'] for lecture in courses.documents['course-1']['lectures']] == ['lec-a', 'lec-c']
    assert 'lms/lectures/a.mp4' in s3.objects


# ==== avatars ====

def test_attach_avatar(client, users):
    response = client.post('/api/users/user-1/avatar',
                           data=file_form('avatar', b'img', 'face.png'),
                           content_type='multipart/form-data')
    assert response.status_code == 201
    assert users.documents['user-1']['avatar']['key'] == 'lms/avatars/face.png'


def test_replace_empty_avatar_is_400(client):
    response = client.put('/api/users/user-1/avatar',
                          data=file_form('avatar', b'img', 'face.png'),
                          content_type='multipart/form-data')
    assert response.status_code == 400


def test_delete_user_removes_avatar(client, users, s3):
    response = client.delete('/api/users/user-2')

    assert response.status_code == 200
    assert response.get_json()['released_keys'] == ['lms/avatars/me.png']
    assert 'user-2' not in users.documents
    assert 'lms/avatars/me.png' not in s3.objects


def test_delete_unknown_user_is_404(client):
    assert client.delete('/api/users/ghost').status_code == 404
