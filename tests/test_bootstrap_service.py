import asyncio
import json
import tempfile
import unittest
from pathlib import Path

from docere.services.auth_service import find_user_by_email
from docere.services.bootstrap_service import load_seed_users, run_bootstrap
from docere.store.memory import MemoryDocumentStore


class BootstrapServiceTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.store = MemoryDocumentStore()

    def tearDown(self):
        self._tmpdir.cleanup()

    def _write_seed(self, payload) -> str:
        path = Path(self._tmpdir.name) / 'users.json'
        path.write_text(json.dumps(payload), encoding='utf-8')
        return str(path)

    def test_skips_without_seed_file(self):
        result = asyncio.run(run_bootstrap(self.store, ''))
        self.assertEqual(result, {'ran': False, 'reason': 'no_seed_file'})

    def test_seeds_valid_users_and_skips_invalid(self):
        path = self._write_seed(
            {
                'users': [
                    {'email': 'teacher@school.org', 'password': 'secret-pass', 'role': 'teacher', 'uid': 'teacher-1'},
                    {'email': 'kid@school.org', 'password': 'secret-pass', 'role': 'student'},
                    {'email': 'bad@school.org', 'password': 'secret-pass', 'role': 'janitor'},
                ]
            }
        )

        with self.assertLogs('docere.services.bootstrap_service', level='WARNING'):
            result = asyncio.run(run_bootstrap(self.store, path))

        self.assertEqual(result, {'ran': True, 'seeded': 2, 'skipped': 1})
        teacher = asyncio.run(find_user_by_email(self.store, 'teacher@school.org'))
        self.assertEqual(teacher.key, 'teacher-1')
        self.assertEqual(teacher.get('role'), 'teacher')

    def test_seed_file_must_hold_a_list(self):
        path = self._write_seed({'users': 'nope'})
        with self.assertRaises(ValueError):
            load_seed_users(path)
        self.assertEqual(load_seed_users(self._write_seed([{'email': 'a@b.org'}])), [{'email': 'a@b.org'}])


if __name__ == '__main__':
    unittest.main()
