import os
import tempfile
import unittest

from osimad.cleanup import remove_all_temp_files
from osimad.config import JobContext
from osimad.config import working_roots


def _touch(path):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w') as f:
        f.write('x')


class TestRemoveAllTempFiles(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = self._tmp.name
        for name in ('F_a', 'F_b'):
            ctx = JobContext(name, root=self.root)
            ctx.make_dirs()
            for path in ctx.job_dirs:
                _touch(os.path.join(path, 'sub', 'file.txt'))
        self.ctx = JobContext('F_a', root=self.root)
        _touch(self.ctx.lock_file)
        _touch(self.ctx.leftover_script)

    def tearDown(self):
        self._tmp.cleanup()

    def _entries(self):
        return [sorted(os.listdir(r)) for r in working_roots(self.root)]

    def test_remove_all(self):
        remove_all_temp_files(root=self.root)
        self.assertEqual(self._entries(), [[], [], []])
        self.assertFalse(os.path.exists(self.ctx.lock_file))
        self.assertFalse(os.path.exists(self.ctx.leftover_script))
        # the roots themselves and the SDK stay
        for path in working_roots(self.root):
            self.assertTrue(os.path.isdir(path))
        self.assertTrue(os.path.isdir(self.ctx.sdk_bin_dir))

    def test_remove_single_job(self):
        remove_all_temp_files('F_a', root=self.root)
        self.assertEqual(self._entries(), [['F_b'], ['F_b'], ['F_b']])
        self.assertFalse(os.path.exists(self.ctx.lock_file))
        self.assertFalse(os.path.exists(self.ctx.leftover_script))

    def test_files_in_roots_are_kept(self):
        graph_root = working_roots(self.root)[0]
        _touch(os.path.join(graph_root, 'notes.txt'))
        remove_all_temp_files(root=self.root)
        self.assertEqual(os.listdir(graph_root), ['notes.txt'])

    def test_idempotent(self):
        remove_all_temp_files(root=self.root)
        remove_all_temp_files(root=self.root)
        self.assertEqual(self._entries(), [[], [], []])

    def test_missing_roots(self):
        with tempfile.TemporaryDirectory() as empty:
            remove_all_temp_files(root=empty)
            remove_all_temp_files('F', root=os.path.join(empty, 'missing'))
            self.assertEqual(os.listdir(empty), [])
