import datetime
import gzip
import hashlib
import logging
import os
import tarfile
from pathlib import Path
from typing import BinaryIO, NamedTuple

from .builder import ArchiveBuilder, BuildSummary, DEFAULT_HASH_ALGORITHM
from .errors import ArchiveIOError, FilesystemError
from .manifest.store import ManifestInfo, ManifestStore

logger = logging.getLogger(__name__)

ARCHIVE_FORMATS = {
    'pax': tarfile.PAX_FORMAT,
    'gnu': tarfile.GNU_FORMAT,
    'ustar': tarfile.USTAR_FORMAT,
}


class _DiscardableOutput:
    """Forwards writes to a stream until discard() is called, then drops them.

    Tar and gzip writers flush their buffers when they are garbage collected. After a
    failed build those late writes must not reach the caller's stream.
    """
    def __init__(self, output: BinaryIO):
        self._output: BinaryIO | None = output

    def write(self, data) -> int:
        if self._output is None:
            return len(data)
        return self._output.write(data)

    def flush(self):
        if self._output is not None:
            self._output.flush()

    def discard(self):
        self._output = None


class BuildOptions(NamedTuple):
    """Options of a single archive build."""
    compress: bool = False  # Wrap the tar stream in gzip
    compress_level: int = 6
    archive_format: str = 'pax'  # Key of ARCHIVE_FORMATS
    hash_algorithm: str = DEFAULT_HASH_ALGORITHM
    manifest_path: Path | None = None  # Directory receiving a build manifest


def create_archive(source: str | os.PathLike, output: BinaryIO, options: BuildOptions = BuildOptions()) -> BuildSummary:
    """Write a deduplicated tar archive of the source directory to output.

    The archive stream, and the gzip stream around it, are finalized only when the whole
    tree was archived; output itself is left open. On failure the exception propagates
    with the partial stream unfinished and any still-buffered bytes dropped; the caller
    must discard what was written. The manifest's manifest.json is likewise only
    written after success.

    Args:
        source: Directory to archive; its basename becomes the root name in the archive
        output: Binary stream receiving the archive, written sequentially
        options: Compression, tar flavour, hash and manifest options

    Returns:
        Counters of stored blobs and written links

    Raises:
        FilesystemError: The source or an entry under it cannot be opened or listed
        ArchiveIOError: Reading a file or writing the output failed
        ValueError: Unknown archive format or hash algorithm
        FileExistsError: The manifest directory is not empty
    """
    if options.archive_format not in ARCHIVE_FORMATS:
        raise ValueError(f"Unknown archive format: {options.archive_format}")
    if hashlib.new(options.hash_algorithm).digest_size == 0:
        raise ValueError(f"Hash algorithm without a fixed digest size: {options.hash_algorithm}")

    # Normalize without resolving symlinks so the root keeps the name it was given
    source_path = Path(os.path.abspath(source))
    if not source_path.is_dir():
        raise FilesystemError(f"not a directory: {source_path}")

    manifest = None
    if options.manifest_path is not None:
        manifest = ManifestStore(options.manifest_path)
        manifest.create()

    target = _DiscardableOutput(output)
    try:
        stream = target
        if options.compress:
            stream = gzip.GzipFile(fileobj=target, mode='wb', compresslevel=options.compress_level, mtime=0)

        archive = tarfile.open(
            fileobj=stream, mode='w|', format=ARCHIVE_FORMATS[options.archive_format], dereference=True)
        builder = ArchiveBuilder(source_path.name, archive, manifest, options.hash_algorithm)
        try:
            builder.add_root(source_path)
        except Exception:
            target.discard()
            raise

        try:
            archive.close()
            if stream is not target:
                stream.close()
            target.flush()
        except OSError as e:
            target.discard()
            raise ArchiveIOError(f"cannot finalize archive: {e}") from e

        summary = builder.summary()
        logger.info(
            f"Archived {source_path}: {summary.blob_count} blobs ({summary.stored_size} bytes) stored, "
            f"{summary.link_count} links ({summary.linked_size} bytes) written")

        if manifest is not None:
            manifest.write_info(ManifestInfo(
                source_path=str(source_path),
                root_archive_path=str(builder.root_archive_path),
                hash_algorithm=options.hash_algorithm,
                archive_format=options.archive_format,
                compressed=options.compress,
                timestamp=datetime.datetime.now(datetime.UTC).isoformat(),
                blob_count=summary.blob_count,
                stored_size=summary.stored_size,
                link_count=summary.link_count,
                linked_size=summary.linked_size,
            ))

        return summary
    finally:
        if manifest is not None:
            manifest.close()
