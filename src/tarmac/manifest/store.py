"""Run manifest recording the deduplication decisions of one archive build."""

import json
import os
from dataclasses import dataclass, asdict
from pathlib import Path, PurePosixPath
from typing import Any, Iterator

import mmh3
import msgpack
import plyvel

from ..utils.varint import encode_varint, decode_varint

BLOB_PREFIX = b'b'
LINK_PREFIX = b'l'


def _encode_parts(path: PurePosixPath) -> list[bytes]:
    # Filesystem bytes, so names that are not valid UTF-8 survive the round trip
    return [os.fsencode(part) for part in path.parts]


def _decode_parts(parts: list[bytes]) -> PurePosixPath:
    return PurePosixPath(*(os.fsdecode(part) for part in parts))


class BlobRecord:
    """A content blob stored once under the backing store.

    Attributes:
        hash_key: Content hash key, also the blob's name inside the backing store
        size: Size of the stored content in bytes
        first_path: Logical archive path of the first file that carried this content
    """

    def __init__(self, hash_key: str, size: int, first_path: PurePosixPath):
        self.hash_key = hash_key
        self.size = size
        self.first_path = first_path

    def to_msgpack(self) -> bytes:
        result = msgpack.dumps([self.hash_key, self.size, _encode_parts(self.first_path)])
        assert isinstance(result, bytes)
        return result

    @classmethod
    def from_msgpack(cls, data: bytes) -> "BlobRecord":
        hash_key, size, path_components = msgpack.loads(data)
        return cls(hash_key, size, _decode_parts(path_components))

    def __repr__(self):
        return f"BlobRecord({self.hash_key!r}, {self.size}, {str(self.first_path)!r})"


class LinkRecord:
    """A logical archive path linked to a stored blob."""

    def __init__(self, path: PurePosixPath, hash_key: str, size: int):
        self.path = path
        self.hash_key = hash_key
        self.size = size

    def to_msgpack(self) -> bytes:
        result = msgpack.dumps([_encode_parts(self.path), self.hash_key, self.size])
        assert isinstance(result, bytes)
        return result

    @classmethod
    def from_msgpack(cls, data: bytes) -> "LinkRecord":
        path_components, hash_key, size = msgpack.loads(data)
        return cls(_decode_parts(path_components), hash_key, size)

    def __repr__(self):
        return f"LinkRecord({str(self.path)!r}, {self.hash_key!r}, {self.size})"


@dataclass
class ManifestInfo:
    """Summary of a finished build, persisted as manifest.json.

    The file is only written once the archive has been finalized, so its presence marks
    the database next to it as describing a complete archive.
    """
    version: str = "1.0"
    """Manifest format version"""

    source_path: str = ""
    """Absolute path of the archived source directory"""

    root_archive_path: str = ""
    """Name of the source directory inside the archive"""

    hash_algorithm: str = ""
    """hashlib name of the content hash"""

    archive_format: str = ""
    """Tar flavour of the archive (pax, gnu or ustar)"""

    compressed: bool = False
    """Whether the archive stream was gzip compressed"""

    timestamp: str = ""
    """ISO format timestamp when the build finished"""

    blob_count: int = 0
    stored_size: int = 0
    link_count: int = 0
    linked_size: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ManifestInfo":
        return cls(**data)


class ManifestStore:
    """Reads and writes a build manifest directory backed by LevelDB."""

    def __init__(self, manifest_dir: Path) -> None:
        self.manifest_dir: Path = manifest_dir
        self.info_path: Path = manifest_dir / 'manifest.json'
        self.database_path: Path = manifest_dir / 'database'
        self._database: plyvel.DB | None = None

    def create(self) -> None:
        """Create the manifest directory and an empty database.

        Raises:
            FileExistsError: The directory exists and is not empty
        """
        self.manifest_dir.mkdir(parents=True, exist_ok=True)
        if any(self.manifest_dir.iterdir()):
            raise FileExistsError(f"Manifest directory is not empty: {self.manifest_dir}")
        self._database = plyvel.DB(str(self.database_path), create_if_missing=True)

    def open(self) -> None:
        """Open an existing manifest database.

        Raises:
            FileNotFoundError: No database exists in the manifest directory
        """
        if not self.database_path.exists():
            raise FileNotFoundError(f"Manifest database not found: {self.database_path}")
        self._database = plyvel.DB(str(self.database_path))

    def close(self) -> None:
        if self._database is not None:
            self._database.close()
            self._database = None

    def __enter__(self) -> "ManifestStore":
        self.open()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def add_blob(self, record: BlobRecord) -> None:
        self._db().put(BLOB_PREFIX + record.hash_key.encode('ascii'), record.to_msgpack())

    def read_blob(self, hash_key: str) -> BlobRecord | None:
        data = self._db().get(BLOB_PREFIX + hash_key.encode('ascii'))
        if data is None:
            return None
        return BlobRecord.from_msgpack(data)

    def list_blobs(self) -> Iterator[BlobRecord]:
        for _, value in self._db().iterator(prefix=BLOB_PREFIX):
            yield BlobRecord.from_msgpack(value)

    def add_link(self, record: LinkRecord) -> None:
        """Write a link record keyed by <link prefix><16-byte path hash><varint sequence number>.

        Paths whose hashes collide share a prefix and are told apart by the sequence
        number. Writing the same path twice replaces the earlier record.
        """
        prefixed_db = self._db().prefixed_db(LINK_PREFIX + self._compute_path_hash(record.path))

        next_seq_num = 0
        for key, value in prefixed_db.iterator():
            seq_num, _ = decode_varint(key, 0)
            next_seq_num = max(next_seq_num, seq_num + 1)

            if LinkRecord.from_msgpack(value).path == record.path:
                prefixed_db.put(key, record.to_msgpack())
                return

        prefixed_db.put(encode_varint(next_seq_num), record.to_msgpack())

    def read_link(self, path: PurePosixPath) -> LinkRecord | None:
        prefixed_db = self._db().prefixed_db(LINK_PREFIX + self._compute_path_hash(path))
        for _, value in prefixed_db.iterator():
            record = LinkRecord.from_msgpack(value)
            if record.path == path:
                return record
        return None

    def list_links(self) -> Iterator[LinkRecord]:
        for _, value in self._db().iterator(prefix=LINK_PREFIX):
            yield LinkRecord.from_msgpack(value)

    def write_info(self, info: ManifestInfo) -> None:
        with open(self.info_path, 'w') as f:
            json.dump(info.to_dict(), f, indent=2)

    def read_info(self) -> ManifestInfo:
        """Read manifest.json.

        Raises:
            FileNotFoundError: The build never completed or the directory is not a manifest
        """
        with open(self.info_path, 'r') as f:
            data = json.load(f)
        return ManifestInfo.from_dict(data)

    def inspect(self) -> Iterator[str]:
        """Generate human-readable lines for every record, blobs first."""
        for blob in sorted(self.list_blobs(), key=lambda r: r.hash_key):
            yield f"blob {blob.hash_key} size={blob.size} first={blob.first_path}"
        for link in sorted(self.list_links(), key=lambda r: r.path):
            yield f"link {link.path} -> {link.hash_key} size={link.size}"

    def _db(self) -> plyvel.DB:
        if self._database is None:
            raise RuntimeError("Database not opened. Use context manager or call open() or create().")
        return self._database

    @staticmethod
    def _compute_path_hash(path: PurePosixPath) -> bytes:
        """Compute the 128-bit Murmur3 hash of a path's components."""
        hash_value = mmh3.hash128(b"\0".join(_encode_parts(path)), signed=False)
        return hash_value.to_bytes(16, byteorder='big')
