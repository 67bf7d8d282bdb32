from .archive import BuildOptions, create_archive
from .builder import ArchiveBuilder, BuildSummary, BACKING_STORE_NAME, hash_key
from .errors import TarmacError, FilesystemError, ArchiveIOError
from .manifest.store import BlobRecord, LinkRecord, ManifestInfo, ManifestStore
from .settings import BuildSettings
