"""Tests for create_archive(), the full build including output stream handling."""
import gc
import gzip
import io
import os
import tarfile
import tempfile
import unittest
from pathlib import Path

from tarmac.archive import BuildOptions, create_archive
from tarmac.errors import FilesystemError
from tarmac.manifest.store import ManifestStore

from .test_utils import build_archive, content_key, read_member_content, read_members


class CreateArchiveTest(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.base = Path(self._tmpdir.name)
        self.root = self.base / 'root'
        self.root.mkdir()
        (self.root / 'a.txt').write_bytes(b'hi')
        (self.root / 'b').mkdir()
        (self.root / 'b' / 'c.txt').write_bytes(b'hi')
        (self.root / 'd.txt').write_bytes(b'bye')

    def tearDown(self):
        self._tmpdir.cleanup()

    def test_plain_archive(self):
        data = build_archive(self.root)
        members = read_members(data)

        blobs = {m.name for m in members if m.isreg()}
        self.assertEqual({
            f'root/.backing_store/{content_key(b"hi")}',
            f'root/.backing_store/{content_key(b"bye")}',
        }, blobs)
        links = {m.name: m.linkname for m in members if m.islnk()}
        self.assertEqual({
            'root/a.txt': f'root/.backing_store/{content_key(b"hi")}',
            'root/b/c.txt': f'root/.backing_store/{content_key(b"hi")}',
            'root/d.txt': f'root/.backing_store/{content_key(b"bye")}',
        }, links)

    def test_summary(self):
        summary = create_archive(self.root, io.BytesIO())

        self.assertEqual(2, summary.blob_count)
        self.assertEqual(3, summary.link_count)

    def test_compressed_archive(self):
        data = build_archive(self.root, compress=True)

        self.assertEqual(b'\x1f\x8b', data[:2])
        self.assertEqual(
            [m.name for m in read_members(build_archive(self.root))],
            [m.name for m in read_members(data, compressed=True)])
        self.assertEqual(b'hi', read_member_content(gzip.decompress(data), 'root/b/c.txt'))

    def test_compressed_output_is_reproducible(self):
        """The gzip header carries no timestamp, so identical input gives identical bytes."""
        self.assertEqual(build_archive(self.root, compress=True), build_archive(self.root, compress=True))

    def test_output_left_open(self):
        output = io.BytesIO()
        create_archive(self.root, output, BuildOptions(compress=True))

        self.assertFalse(output.closed)

    def test_archive_formats(self):
        for archive_format in ('gnu', 'ustar'):
            with self.subTest(archive_format=archive_format):
                data = build_archive(self.root, archive_format=archive_format)
                with tarfile.open(fileobj=io.BytesIO(data), mode='r:') as archive:
                    names = archive.getnames()
                self.assertIn('root/b/c.txt', names)
                self.assertEqual(5, len(names))

    def test_unknown_format(self):
        with self.assertRaises(ValueError):
            build_archive(self.root, archive_format='zip')

    def test_unknown_hash_algorithm(self):
        with self.assertRaises(ValueError):
            build_archive(self.root, hash_algorithm='no-such-hash')

    def test_other_hash_algorithm(self):
        data = build_archive(self.root, hash_algorithm='sha256')
        blobs = [m.name for m in read_members(data) if m.isreg()]

        self.assertEqual(2, len(blobs))
        # 32-byte digests render as 44 characters
        self.assertTrue(all(len(name.rsplit('/', 1)[1]) == 44 for name in blobs))

    def test_source_not_a_directory(self):
        with self.assertRaises(FilesystemError):
            build_archive(self.root / 'a.txt')

    def test_source_missing(self):
        with self.assertRaises(FilesystemError):
            build_archive(self.base / 'missing')

    def test_source_path_normalized(self):
        """The root name comes from the normalized path, not a trailing '..' component."""
        data = build_archive(self.root / 'b' / '..')

        self.assertIn('root/a.txt', [m.name for m in read_members(data)])

    def test_manifest(self):
        manifest_dir = self.base / 'manifest'

        create_archive(self.root, io.BytesIO(), BuildOptions(compress=True, manifest_path=manifest_dir))

        with ManifestStore(manifest_dir) as store:
            info = store.read_info()
            self.assertEqual(str(self.root), info.source_path)
            self.assertEqual('root', info.root_archive_path)
            self.assertEqual('sha512', info.hash_algorithm)
            self.assertTrue(info.compressed)
            self.assertEqual(2, info.blob_count)
            self.assertEqual(3, info.link_count)

            blob = store.read_blob(content_key(b'hi'))
            self.assertIsNotNone(blob)
            self.assertEqual('root/a.txt', str(blob.first_path))
            self.assertEqual(2, blob.size)

            self.assertEqual(
                {'root/a.txt', 'root/b/c.txt', 'root/d.txt'},
                {str(link.path) for link in store.list_links()})

    def test_manifest_with_non_utf8_name(self):
        name = b'caf\xe9'
        try:
            with open(os.path.join(os.fsencode(self.root), name), 'wb') as f:
                f.write(b'hi')
        except OSError:
            self.skipTest("filesystem rejects names that are not valid UTF-8")
        manifest_dir = self.base / 'manifest'

        summary = create_archive(self.root, io.BytesIO(), BuildOptions(manifest_path=manifest_dir))

        self.assertEqual(4, summary.link_count)
        with ManifestStore(manifest_dir) as store:
            self.assertIn(
                'root/' + os.fsdecode(name),
                {str(link.path) for link in store.list_links()})

    def test_failed_build_leaves_no_buffered_bytes(self):
        """Bytes the tar writer still buffers at the failure never reach the output."""
        (self.root / 'zz').symlink_to('missing')
        output = io.BytesIO()

        with self.assertRaises(FilesystemError):
            create_archive(self.root, output)
        gc.collect()

        self.assertEqual(b'', output.getvalue())

    def test_failed_compressed_build_is_not_finalized(self):
        (self.root / 'zz').symlink_to('missing')
        output = io.BytesIO()

        with self.assertRaises(FilesystemError):
            create_archive(self.root, output, BuildOptions(compress=True))
        gc.collect()

        with self.assertRaises(EOFError):
            gzip.decompress(output.getvalue())

    def test_manifest_without_info_after_failure(self):
        manifest_dir = self.base / 'manifest'
        (self.root / 'zz').symlink_to('missing')

        with self.assertRaises(FilesystemError):
            create_archive(self.root, io.BytesIO(), BuildOptions(manifest_path=manifest_dir))

        self.assertFalse((manifest_dir / 'manifest.json').exists())

    def test_manifest_directory_not_empty(self):
        manifest_dir = self.base / 'manifest'
        manifest_dir.mkdir()
        (manifest_dir / 'leftover').write_text('x')

        with self.assertRaises(FileExistsError):
            create_archive(self.root, io.BytesIO(), BuildOptions(manifest_path=manifest_dir))
