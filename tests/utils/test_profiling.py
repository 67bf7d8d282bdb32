import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from tarmac.utils.profiling import (
    get_profile_dir,
    generate_profile_filename,
    profile_function,
    profile_main,
)


class ProfilingTest(unittest.TestCase):
    def setUp(self):
        self._environ = mock.patch.dict(os.environ)
        self._environ.start()
        os.environ.pop('TARMAC_PROFILE', None)

    def tearDown(self):
        self._environ.stop()

    def test_get_profile_dir_when_not_set(self):
        self.assertIsNone(get_profile_dir())

    def test_get_profile_dir_when_set(self):
        """The profile directory gets a {timestamp_ms}_{pid} session subdirectory."""
        os.environ['TARMAC_PROFILE'] = '/tmp/test_profile'

        result = get_profile_dir()

        self.assertEqual(Path('/tmp/test_profile'), result.parent)
        timestamp, pid = result.name.split('_')
        self.assertTrue(timestamp.isdigit())
        self.assertEqual(str(os.getpid()), pid)

    def test_generate_profile_filename_unique(self):
        first = generate_profile_filename('main')
        second = generate_profile_filename('main')

        self.assertNotEqual(first, second)
        self.assertTrue(first.startswith(f'main_{os.getpid()}_'))
        self.assertTrue(first.endswith('.prof'))

    def test_profile_function_disabled(self):
        wrapped = profile_function(lambda x: x * 2)

        self.assertEqual(10, wrapped(5))

    def test_profile_main_writes_stats(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            os.environ['TARMAC_PROFILE'] = tmpdir

            @profile_main
            def entry_point(value):
                return sum(range(value))

            self.assertEqual(45, entry_point(10))

            profiles = list(Path(tmpdir).glob('*/main_*.prof'))
            self.assertEqual(1, len(profiles))
            self.assertGreater(profiles[0].stat().st_size, 0)

    def test_profile_written_when_function_raises(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            os.environ['TARMAC_PROFILE'] = tmpdir

            @profile_main
            def failing():
                raise SystemExit(2)

            with self.assertRaises(SystemExit):
                failing()

            self.assertEqual(1, len(list(Path(tmpdir).glob('*/*.prof'))))
