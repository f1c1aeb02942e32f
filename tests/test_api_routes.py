import asyncio
import unittest
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from docere.app_state import build_context, get_context
from docere.core.time_provider import TimeProvider
from docere.routers import attendance, auth, class_info, notices, parents, realtime, submissions
from docere.services.auth_service import login, register_user
from docere.store.memory import MemoryDocumentStore


class MutableTimeProvider(TimeProvider):
    def __init__(self, frozen_dt: datetime):
        self._frozen_dt = frozen_dt

    def now(self) -> datetime:
        return self._frozen_dt

    def advance(self, seconds: float) -> None:
        self._frozen_dt = self._frozen_dt + timedelta(seconds=seconds)


USERS = (
    ('teacher', 'teacher@school.org', 'teacher'),
    ('alice', 'alice@school.org', 'student'),
    ('bob', 'bob@school.org', 'student'),
    ('parent', 'parent@home.org', 'parent'),
)
PASSWORD = 'secret-pass'


class ApiRouteTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        app = FastAPI()
        app.include_router(auth.router)
        app.include_router(attendance.router)
        app.include_router(submissions.router)
        app.include_router(notices.router)
        app.include_router(parents.router)
        app.include_router(class_info.router)
        app.include_router(realtime.router)
        app.dependency_overrides[get_context] = lambda: cls.ctx
        cls.app = app

    def setUp(self):
        self.clock = MutableTimeProvider(datetime(2026, 10, 16, 9, 0, 0, tzinfo=timezone.utc))
        type(self).ctx = build_context(store=MemoryDocumentStore(self.clock), time_provider=self.clock)
        self.tokens = {}

        async def seed():
            for label, email, role in USERS:
                await register_user(self.ctx.store, email, PASSWORD, role, name=label.title())
                session = await login(self.ctx.store, email, PASSWORD, time_provider=self.clock)
                self.tokens[label] = session['token']

        asyncio.run(seed())
        self.client = TestClient(self.app)

    def tearDown(self):
        self.client.close()
        asyncio.run(self.ctx.close())

    def _auth(self, label):
        return {'Authorization': f'Bearer {self.tokens[label]}'}

    def test_login_sets_cookie_and_me(self):
        response = self.client.post('/auth/login', json={'email': 'teacher@school.org', 'password': PASSWORD})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['role'], 'teacher')
        self.assertIn('auth_session', response.cookies)

        me = self.client.get('/auth/me')
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()['email'], 'teacher@school.org')

        self.client.post('/auth/logout')
        self.assertEqual(self.client.get('/auth/me').status_code, 401)

    def test_login_rejects_bad_password(self):
        response = self.client.post('/auth/login', json={'email': 'teacher@school.org', 'password': 'nope-nope'})
        self.assertEqual(response.status_code, 401)

    def test_attendance_flow(self):
        opened = self.client.post('/api/attendance/open', json={'duration_seconds': 30}, headers=self._auth('teacher'))
        self.assertEqual(opened.status_code, 200)
        self.assertTrue(opened.json()['is_open'])
        self.assertEqual(opened.json()['remaining_seconds'], 30)

        marked = self.client.post('/api/attendance/mark', json={'student_name': ' Alice '}, headers=self._auth('alice'))
        self.assertEqual(marked.status_code, 200)
        self.assertEqual(marked.json(), {'ok': True, 'student_name': 'Alice'})

        again = self.client.post('/api/attendance/mark', json={'student_name': 'Alice'}, headers=self._auth('alice'))
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()['detail'], 'You have already marked your attendance!')

        self.clock.advance(10)
        status = self.client.get('/api/attendance/status', headers=self._auth('alice')).json()
        self.assertEqual(status['remaining_seconds'], 20)

        record = self.client.get('/api/attendance/2026-10-16', headers=self._auth('teacher')).json()
        self.assertEqual(record['status'], 'open')
        self.assertEqual(record['students'], ['Alice'])

        closed = self.client.post('/api/attendance/close', headers=self._auth('teacher'))
        self.assertEqual(closed.status_code, 200)
        late = self.client.post('/api/attendance/mark', json={'student_name': 'Bob'}, headers=self._auth('bob'))
        self.assertEqual(late.status_code, 409)
        self.assertEqual(late.json()['detail'], 'Attendance is not open!')

    def test_mark_after_expiry_is_gone(self):
        self.client.post('/api/attendance/open', json={'duration_seconds': 5}, headers=self._auth('teacher'))
        self.clock.advance(6)

        response = self.client.post('/api/attendance/mark', json={'student_name': 'Bob'}, headers=self._auth('bob'))
        self.assertEqual(response.status_code, 410)
        self.assertEqual(response.json()['detail'], 'Attendance time has expired!')
        record = self.client.get('/api/attendance/2026-10-16', headers=self._auth('teacher')).json()
        self.assertEqual(record['status'], 'closed')

    def test_attendance_permissions_and_validation(self):
        anonymous = self.client.post('/api/attendance/open', json={'duration_seconds': 30})
        self.assertEqual(anonymous.status_code, 401)

        student = self.client.post('/api/attendance/open', json={'duration_seconds': 30}, headers=self._auth('alice'))
        self.assertEqual(student.status_code, 403)
        self.assertEqual(student.json()['detail'], 'Only teachers can open attendance.')

        invalid = self.client.post('/api/attendance/open', json={'duration_seconds': 0}, headers=self._auth('teacher'))
        self.assertEqual(invalid.status_code, 400)

        self.assertEqual(self.client.post('/api/attendance/close').status_code, 401)
        self.assertEqual(self.client.post('/api/attendance/close', headers=self._auth('parent')).status_code, 403)

        bad_date = self.client.get('/api/attendance/16-10-2026', headers=self._auth('teacher'))
        self.assertEqual(bad_date.status_code, 400)

        self.client.post('/api/attendance/open', json={}, headers=self._auth('teacher'))
        empty = self.client.post('/api/attendance/mark', json={'student_name': '  '}, headers=self._auth('alice'))
        self.assertEqual(empty.status_code, 400)
        self.assertEqual(empty.json()['detail'], 'Please enter your name')

    def test_submission_routes(self):
        missing = self.client.post(
            '/api/submissions', json={'student_name': 'Alice', 'content': 'essay'}, headers=self._auth('alice')
        )
        self.assertEqual(missing.status_code, 409)

        deadline = self.client.put('/api/deadline', json={'date': '2026-10-20'}, headers=self._auth('teacher'))
        self.assertEqual(deadline.status_code, 200)

        created = self.client.post(
            '/api/submissions', json={'student_name': 'Alice', 'content': 'essay'}, headers=self._auth('alice')
        )
        self.assertEqual(created.status_code, 201)
        duplicate = self.client.post(
            '/api/submissions', json={'student_name': 'Alice', 'content': 'essay 2'}, headers=self._auth('alice')
        )
        self.assertEqual(duplicate.status_code, 409)

        rows = self.client.get(
            '/api/submissions', params={'deadline_date': '2026-10-20'}, headers=self._auth('teacher')
        ).json()
        self.assertEqual([row['student_name'] for row in rows], ['Alice'])

        self.client.post('/api/attendance/open', json={'duration_seconds': 60}, headers=self._auth('teacher'))
        self.client.post('/api/attendance/mark', json={'student_name': 'Alice'}, headers=self._auth('alice'))
        self.client.post('/api/attendance/mark', json={'student_name': 'Bob'}, headers=self._auth('bob'))
        board = self.client.get('/api/submissions/board', headers=self._auth('teacher'))
        self.assertEqual(board.status_code, 200)
        self.assertEqual(board.json()['deadline_date'], '2026-10-20')
        self.assertEqual(
            board.json()['students'],
            [{'student_name': 'Alice', 'submitted': True}, {'student_name': 'Bob', 'submitted': False}],
        )
        self.assertEqual(self.client.get('/api/submissions/board', headers=self._auth('alice')).status_code, 403)

    def test_parent_message_routes(self):
        sent = self.client.post(
            '/api/parent-messages',
            json={'child_name': 'Alice', 'message': 'She will be late'},
            headers=self._auth('parent'),
        )
        self.assertEqual(sent.status_code, 201)
        message_id = sent.json()['id']

        self.assertEqual(self.client.get('/api/parent-messages', headers=self._auth('parent')).status_code, 403)
        listed = self.client.get('/api/parent-messages', headers=self._auth('teacher')).json()
        self.assertEqual(listed[0]['id'], message_id)
        self.assertFalse(listed[0]['read'])

        read = self.client.post(f'/api/parent-messages/{message_id}/read', headers=self._auth('teacher'))
        self.assertEqual(read.status_code, 200)
        unknown = self.client.post('/api/parent-messages/unknown/read', headers=self._auth('teacher'))
        self.assertEqual(unknown.status_code, 404)

        self.assertEqual(self.client.get('/api/parent-reply', headers=self._auth('parent')).json(), {'reply': 'No reply'})
        self.client.put('/api/parent-reply', json={'reply': 'Thanks for letting me know'}, headers=self._auth('teacher'))
        reply = self.client.get('/api/parent-reply', headers=self._auth('parent')).json()
        self.assertEqual(reply, {'reply': 'Thanks for letting me know'})

    def test_notice_and_class_info_routes(self):
        self.assertEqual(self.client.put('/api/notice', json={'text': 'Hi'}, headers=self._auth('alice')).status_code, 403)
        self.client.put('/api/notice', json={'text': 'Exam Monday'}, headers=self._auth('teacher'))
        self.assertEqual(self.client.get('/api/notice', headers=self._auth('parent')).json(), {'text': 'Exam Monday'})

        info = self.client.put(
            '/api/class-info', json={'class_name': 'Grade 7B', 'strength': 'lots'}, headers=self._auth('teacher')
        )
        self.assertEqual(info.json(), {'class_name': 'Grade 7B', 'strength': 0})

        self.client.put('/api/class-info', json={'class_name': 'Grade 7B', 'strength': 2}, headers=self._auth('teacher'))
        self.client.post('/api/attendance/open', json={'duration_seconds': 60}, headers=self._auth('teacher'))
        self.client.post('/api/attendance/mark', json={'student_name': 'Alice'}, headers=self._auth('alice'))
        summary = self.client.get('/api/class-info/summary', headers=self._auth('parent')).json()
        self.assertEqual((summary['total'], summary['present'], summary['absent']), (2, 1, 1))

    def test_notice_stream_pushes_updates(self):
        with self.client.websocket_connect('/ws/notice', headers=self._auth('parent')) as websocket:
            self.assertEqual(websocket.receive_json(), {'type': 'notice', 'data': {'text': 'No notice'}})
            self.client.put('/api/notice', json={'text': 'Bring calculators'}, headers=self._auth('teacher'))
            self.assertEqual(websocket.receive_json(), {'type': 'notice', 'data': {'text': 'Bring calculators'}})
        self.assertEqual(self.ctx.store.listener_count(), 0)

    def test_attendance_status_stream(self):
        with self.client.websocket_connect(f"/ws/attendance/status?token={self.tokens['alice']}") as websocket:
            initial = websocket.receive_json()
            self.assertEqual(initial['type'], 'attendance_status')
            self.assertFalse(initial['data']['is_open'])

            self.client.post('/api/attendance/open', json={'duration_seconds': 45}, headers=self._auth('teacher'))
            opened = websocket.receive_json()
            self.assertTrue(opened['data']['is_open'])
            self.assertEqual(opened['data']['remaining_seconds'], 45)

    def test_parent_messages_stream_requires_teacher(self):
        with self.client.websocket_connect('/ws/parent-messages') as websocket:
            message = websocket.receive_json()
            self.assertEqual(message['type'], 'error')
            self.assertEqual(message['status'], 401)
            with self.assertRaises(WebSocketDisconnect):
                websocket.receive_json()

        with self.client.websocket_connect(f"/ws/parent-messages?token={self.tokens['teacher']}") as websocket:
            self.assertEqual(websocket.receive_json(), {'type': 'parent_messages', 'data': []})

    def test_reads_require_login(self):
        for path in ('/api/attendance/status', '/api/attendance/2026-10-16', '/api/notice', '/api/deadline'):
            with self.subTest(path=path):
                self.assertEqual(self.client.get(path).status_code, 401)
        self.assertEqual(self.client.get('/api/class-info/summary').status_code, 401)
        self.assertEqual(self.client.get('/api/parent-reply').status_code, 401)

    def test_submission_list_is_teacher_only(self):
        self.client.put('/api/deadline', json={'date': '2026-10-20'}, headers=self._auth('teacher'))
        self.client.post(
            '/api/submissions', json={'student_name': 'Alice', 'content': 'essay'}, headers=self._auth('alice')
        )
        params = {'deadline_date': '2026-10-20'}

        self.assertEqual(self.client.get('/api/submissions', params=params).status_code, 401)
        for label in ('alice', 'parent'):
            with self.subTest(label=label):
                response = self.client.get('/api/submissions', params=params, headers=self._auth(label))
                self.assertEqual(response.status_code, 403)
        teacher = self.client.get('/api/submissions', params=params, headers=self._auth('teacher'))
        self.assertEqual(teacher.status_code, 200)

    def test_submissions_stream_is_teacher_only(self):
        with self.client.websocket_connect('/ws/submissions?deadline_date=2026-10-20') as websocket:
            message = websocket.receive_json()
            self.assertEqual(message['type'], 'error')
            self.assertEqual(message['status'], 401)
            with self.assertRaises(WebSocketDisconnect):
                websocket.receive_json()

        url = f"/ws/submissions?deadline_date=2026-10-20&token={self.tokens['alice']}"
        with self.client.websocket_connect(url) as websocket:
            message = websocket.receive_json()
            self.assertEqual(message['type'], 'error')
            self.assertEqual(message['status'], 403)

        url = f"/ws/submissions?deadline_date=2026-10-20&token={self.tokens['teacher']}"
        with self.client.websocket_connect(url) as websocket:
            self.assertEqual(websocket.receive_json(), {'type': 'submissions', 'data': []})

    def test_streams_reject_anonymous_clients(self):
        for path in ('/ws/notice', '/ws/attendance/status', '/ws/class-info'):
            with self.subTest(path=path):
                with self.client.websocket_connect(path) as websocket:
                    message = websocket.receive_json()
                    self.assertEqual(message['type'], 'error')
                    self.assertEqual(message['status'], 401)
                    with self.assertRaises(WebSocketDisconnect):
                        websocket.receive_json()


class StreamOutboxTests(unittest.TestCase):
    def test_full_outbox_marks_overflow_and_drops_later_messages(self):
        async def scenario():
            outbox = realtime.StreamOutbox(maxsize=2)
            for index in range(3):
                outbox.offer({'type': 'notice', 'data': index})
            overflowed = outbox.overflowed.is_set()
            outbox.queue.get_nowait()
            outbox.offer({'type': 'notice', 'data': 3})
            return overflowed, outbox.queue.qsize(), outbox.queue.get_nowait()

        overflowed, size, remaining = asyncio.run(scenario())
        self.assertTrue(overflowed)
        self.assertEqual(size, 1)
        self.assertEqual(remaining, {'type': 'notice', 'data': 1})

    def test_default_limit_comes_from_settings(self):
        async def scenario():
            return realtime.StreamOutbox().queue.maxsize

        self.assertEqual(asyncio.run(scenario()), realtime.settings.ws_queue_limit)


if __name__ == '__main__':
    unittest.main()
