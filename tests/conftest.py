import copy
import io
import itertools
import threading
from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError

from lms_backend.cleanup import CleanupPolicy, OrphanRegistry
from lms_backend.lifecycle import MediaLifecycle
from lms_backend.models import UploadInput
from lms_backend.storage import ChunkedUploader

BUCKET = 'lms-bucket'
PART = 1024
CDN = 'https://cdn.example.com'


def client_error(op):
    return ClientError({'Error': {'Code': 'InternalError', 'Message': f'{op} failed'}}, op)


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client calls the uploader makes."""

    def __init__(self, events=None):
        self.objects = {}
        self.uploads = {}
        self.aborted = []
        self.part_sizes = {}
        self.events = events if events is not None else []
        self.page_size = 1000
        self._failures = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def fail(self, op, when=None, times=None):
        self._failures[op] = {'when': when, 'times': times}

    def _check(self, op, **kwargs):
        rule = self._failures.get(op)
        if rule is None:
            return
        if rule['when'] is not None and not rule['when'](kwargs):
            return
        if rule['times'] is not None:
            if rule['times'] <= 0:
                return
            rule['times'] -= 1
        raise client_error(op)

    def _log(self, op, key):
        with self._lock:
            self.events.append((f's3.{op}', key))

    def put(self, key, body=b'x', last_modified=None):
        self.objects[key] = {
            'Body': body,
            'LastModified': last_modified or datetime.now(timezone.utc),
        }

    def create_multipart_upload(self, Bucket, Key, **extra):
        self._log('create_multipart_upload', Key)
        self._check('create_multipart_upload', Key=Key)
        upload_id = f'upload-{next(self._ids)}'
        with self._lock:
            self.uploads[upload_id] = {
                'Key': Key, 'Parts': {}, 'Initiated': datetime.now(timezone.utc), 'Extra': extra,
            }
        return {'UploadId': upload_id, 'Bucket': Bucket, 'Key': Key}

    def upload_part(self, Bucket, Key, UploadId, PartNumber, Body):
        self._log('upload_part', Key)
        self._check('upload_part', Key=Key, PartNumber=PartNumber)
        with self._lock:
            self.uploads[UploadId]['Parts'][PartNumber] = Body
            self.part_sizes.setdefault(UploadId, {})[PartNumber] = len(Body)
        return {'ETag': f'"etag-{PartNumber}"'}

    def complete_multipart_upload(self, Bucket, Key, UploadId, MultipartUpload):
        self._log('complete_multipart_upload', Key)
        self._check('complete_multipart_upload', Key=Key)
        parts = MultipartUpload['Parts']
        numbers = [part['PartNumber'] for part in parts]
        assert numbers == list(range(1, len(numbers) + 1))
        with self._lock:
            upload = self.uploads.pop(UploadId)
            assert sorted(upload['Parts']) == numbers
            body = b''.join(upload['Parts'][n] for n in numbers)
            self.put(Key, body)
        return {'Location': f'https://{Bucket}.example.com/{Key}', 'Key': Key}

    def abort_multipart_upload(self, Bucket, Key, UploadId):
        self._log('abort_multipart_upload', Key)
        self._check('abort_multipart_upload', Key=Key)
        with self._lock:
            self.aborted.append(UploadId)
            self.uploads.pop(UploadId, None)
        return {}

    def put_object(self, Bucket, Key, Body, **extra):
        self._log('put_object', Key)
        self._check('put_object', Key=Key)
        with self._lock:
            self.put(Key, Body)
        return {'ETag': '"etag"'}

    def delete_object(self, Bucket, Key):
        self._log('delete_object', Key)
        self._check('delete_object', Key=Key)
        with self._lock:
            self.objects.pop(Key, None)
        return {}

    def head_bucket(self, Bucket):
        self._check('head_bucket')
        return {}

    def list_objects_v2(self, Bucket, Prefix, ContinuationToken=None):
        keys = sorted(key for key in self.objects if key.startswith(Prefix))
        start = int(ContinuationToken or 0)
        page = keys[start:start + self.page_size]
        response = {
            'Contents': [
                {'Key': key, 'LastModified': self.objects[key]['LastModified']} for key in page
            ],
            'IsTruncated': start + self.page_size < len(keys),
        }
        if response['IsTruncated']:
            response['NextContinuationToken'] = str(start + self.page_size)
        return response

    def list_multipart_uploads(self, Bucket, Prefix, KeyMarker=None, UploadIdMarker=None):
        return {
            'Uploads': [
                {'Key': upload['Key'], 'UploadId': upload_id, 'Initiated': upload['Initiated']}
                for upload_id, upload in sorted(self.uploads.items())
                if upload['Key'].startswith(Prefix)
            ],
            'IsTruncated': False,
        }


class InMemoryDocumentStore:
    """Dict-backed DocumentStore; hands out copies like a real database would."""

    def __init__(self, collection_name, documents=None, events=None):
        self.collection_name = collection_name
        self.documents = {doc_id: dict(doc, id=doc_id) for doc_id, doc in (documents or {}).items()}
        self.events = events if events is not None else []
        self.fail_writes = False
        self.before_write = None
        self.unreachable = False
        self.queries = []

    def _write(self, op, doc_id):
        self.events.append((f'{self.collection_name}.{op}', doc_id))
        if self.before_write is not None:
            self.before_write(op, doc_id)
        if self.fail_writes:
            raise RuntimeError(f'{op} failed')

    def find_by_id(self, doc_id):
        document = self.documents.get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    def save(self, document):
        self._write('save', document['id'])
        self.documents[document['id']] = copy.deepcopy(document)

    def update_one(self, doc_id, patch):
        self._write('update_one', doc_id)
        if doc_id not in self.documents:
            raise KeyError(doc_id)
        self.documents[doc_id].update(copy.deepcopy(patch))

    def remove_by_id(self, doc_id):
        self._write('remove_by_id', doc_id)
        self.documents.pop(doc_id, None)

    def mutate(self, doc_id, change):
        self._write('mutate', doc_id)
        if doc_id not in self.documents:
            return None
        # a failing change leaves the stored document untouched, like a transaction
        document = copy.deepcopy(self.documents[doc_id])
        change(document)
        self.documents[doc_id] = document
        return copy.deepcopy(document)

    def find_by_field(self, field_name, value):
        self.queries.append((field_name, value))
        return [copy.deepcopy(doc) for doc in self.documents.values() if doc.get(field_name) == value]

    def ping(self):
        if self.unreachable:
            raise RuntimeError(f'{self.collection_name} unreachable')

    def stream(self):
        for document in list(self.documents.values()):
            yield copy.deepcopy(document)


def make_upload(data, name='file.bin', content_type=None):
    return UploadInput(io.BytesIO(data), len(data), name, content_type)


def ref(key):
    return {'key': key, 'url': f'{CDN}/{key}'}


@pytest.fixture
def events():
    return []


@pytest.fixture
def s3(events):
    client = FakeS3Client(events)
    for key in ('lms/thumbnails/old.jpg', 'lms/lectures/a.mp4', 'lms/lectures/b.mp4', 'lms/avatars/me.png'):
        client.put(key)
    return client


@pytest.fixture
def uploader(s3):
    return ChunkedUploader(
        s3, BUCKET, part_size=PART, multipart_threshold=PART, max_concurrency=1,
        acl='public-read', public_base_url=CDN,
    )


@pytest.fixture
def courses(events):
    return InMemoryDocumentStore('courses', {
        'course-1': {
            'title': 'Python 101',
            'thumbnail': ref('lms/thumbnails/old.jpg'),
            'lectures': [
                {'lecture_id': 'lec-a', 'title': 'Intro', 'description': 'Welcome', 'lecture': ref('lms/lectures/a.mp4')},
                {'lecture_id': 'lec-b', 'title': 'Types', 'description': 'Basics', 'lecture': ref('lms/lectures/b.mp4')},
                {'lecture_id': 'lec-c', 'title': 'Quiz', 'description': 'No video yet', 'lecture': {'key': '', 'url': ''}},
            ],
            'number_of_lectures': 3,
        },
        'course-2': {
            'title': 'Empty course',
            'thumbnail': {'key': '', 'url': ''},
            'lectures': [],
            'number_of_lectures': 0,
        },
    }, events=events)


@pytest.fixture
def users(events):
    return InMemoryDocumentStore('users', {
        'user-1': {'full_name': 'New User', 'avatar': {'key': '', 'url': ''}},
        'user-2': {'full_name': 'Old User', 'avatar': ref('lms/avatars/me.png')},
    }, events=events)


@pytest.fixture
def orphans():
    return InMemoryDocumentStore('orphaned_objects')


@pytest.fixture
def cleanup(uploader, orphans):
    return CleanupPolicy(
        uploader, OrphanRegistry(orphans), delete_attempts=2, retry_delay=0, sleep=lambda seconds: None,
    )


@pytest.fixture
def lifecycle(uploader, courses, users, cleanup):
    return MediaLifecycle(
        uploader,
        {'courses': courses, 'users': users},
        cleanup,
        key_builder=lambda namespace, name: f'lms/{namespace}/{name}',
    )
