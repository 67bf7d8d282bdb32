import base64
import copy
import hashlib
import logging
import tarfile
from pathlib import Path, PurePosixPath
from typing import NamedTuple

from .errors import ArchiveIOError, FilesystemError
from .manifest.store import BlobRecord, LinkRecord, ManifestStore
from .utils.walker import FileContext, walk_directory

logger = logging.getLogger(__name__)

BACKING_STORE_NAME = '.backing_store'
DEFAULT_HASH_ALGORITHM = 'sha512'


def hash_key(digest: bytes) -> str:
    """Render a digest as the URL-safe base64 key used to name stored blobs."""
    return base64.urlsafe_b64encode(digest).decode('ascii')


class BuildSummary(NamedTuple):
    """Counters of one finished (or aborted) build."""
    blob_count: int  # Distinct contents stored in the backing store
    stored_size: int  # Bytes written as blob bodies
    link_count: int  # Link records written, one per file occurrence
    linked_size: int  # Total size of all linked files, duplicates included


class ArchiveBuilder:
    """Build context that writes a content-addressed tar archive of one directory tree.

    Every file found under the source root is hashed. The first file with a given content
    is stored once as a regular member at <root>/.backing_store/<hash key>, and every
    file, the first one included, is then added at its own path as a hard link to that
    member. The dedup table lives as long as the builder, so a builder must not be reused
    for a second archive.

    The builder owns the tar writer for the duration of the run and never closes it;
    finalizing the stream is left to the caller once add_root() returns without error.
    Any failure propagates immediately and leaves whatever was already written in place.
    """

    def __init__(self,
                 root_archive_path: str,
                 archive: tarfile.TarFile,
                 manifest: ManifestStore | None = None,
                 hash_algorithm: str = DEFAULT_HASH_ALGORITHM):
        """
        Args:
            root_archive_path: Name of the source directory inside the archive
            archive: Tar writer; gettarinfo() must not turn repeated inodes into its own
                     hard links, so open it with dereference=True
            manifest: Store receiving a record for each blob and link, if any
            hash_algorithm: hashlib name of the content hash
        """
        self._root_archive_path = PurePosixPath(root_archive_path)
        self._archive = archive
        self._manifest = manifest
        self._hash_algorithm = hash_algorithm
        self._stored: dict[str, bool] = {}

        self._blob_count = 0
        self._stored_size = 0
        self._link_count = 0
        self._linked_size = 0

    @property
    def root_archive_path(self) -> PurePosixPath:
        return self._root_archive_path

    def blob_path(self, key: str) -> PurePosixPath:
        return self._root_archive_path / BACKING_STORE_NAME / key

    def is_stored(self, key: str) -> bool:
        return key in self._stored

    def summary(self) -> BuildSummary:
        return BuildSummary(self._blob_count, self._stored_size, self._link_count, self._linked_size)

    def add_root(self, path: Path):
        """Add the whole tree under path, skipping a top-level backing store directory."""
        logger.info(f"Archiving {path} as {self._root_archive_path}")
        self.add_directory(path, FileContext(None, str(self._root_archive_path), path), is_root=True)

    def add_directory(self, path: Path, context: FileContext, is_root: bool = False):
        walk_directory(path, context, self.add_entry, is_root=is_root, reserved_name=BACKING_STORE_NAME)

    def add_entry(self, entry_path: Path, context: FileContext):
        """Add one entry found by the walker, recursing into directories.

        Raises:
            FilesystemError: The entry cannot be opened
            ArchiveIOError: Reading the entry or writing the archive failed
        """
        if context.is_directory():
            return self.add_directory(entry_path, context)

        try:
            f = open(entry_path, 'rb')
        except OSError as e:
            raise FilesystemError(f"cannot open {entry_path}: {e.strerror or e}") from e

        with f:
            try:
                # noinspection PyTypeChecker
                digest = hashlib.file_digest(f, self._hash_algorithm).digest()
            except OSError as e:
                raise ArchiveIOError(f"cannot read {entry_path}: {e.strerror or e}") from e

            key = hash_key(digest)
            blob_path = self.blob_path(key)

            try:
                info = self._archive.gettarinfo(arcname=str(blob_path), fileobj=f)
            except OSError as e:
                raise FilesystemError(f"cannot stat {entry_path}: {e.strerror or e}") from e
            if info is None:
                raise FilesystemError(f"unsupported file type: {entry_path}")

            if key not in self._stored:
                self._store_blob(entry_path, context, key, info, f)

        self._add_link(entry_path, context, key, info)

    def _store_blob(self, entry_path: Path, context: FileContext, key: str, info: tarfile.TarInfo, f):
        try:
            f.seek(0)
            self._archive.addfile(info, f)
        except (OSError, ValueError) as e:
            raise ArchiveIOError(f"cannot store {entry_path}: {e}") from e

        self._stored[key] = True
        self._blob_count += 1
        self._stored_size += info.size
        logger.debug(f"Stored {context.archive_path} as {info.name} ({info.size} bytes)")

        if self._manifest is not None:
            self._manifest.add_blob(BlobRecord(key, info.size, context.archive_path))

    def _add_link(self, entry_path: Path, context: FileContext, key: str, info: tarfile.TarInfo):
        link = copy.copy(info)
        link.name = str(context.archive_path)
        link.type = tarfile.LNKTYPE
        link.linkname = info.name
        link.size = 0

        try:
            self._archive.addfile(link)
        except (OSError, ValueError) as e:
            raise ArchiveIOError(f"cannot add link for {entry_path}: {e}") from e

        self._link_count += 1
        self._linked_size += info.size
        logger.debug(f"Linked {link.name} to {link.linkname}")

        if self._manifest is not None:
            self._manifest.add_link(LinkRecord(context.archive_path, key, info.size))
