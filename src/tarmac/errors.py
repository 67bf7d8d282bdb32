class TarmacError(Exception):
    """Base class for failures that abort an archive build."""


class FilesystemError(TarmacError):
    """A source directory or file could not be opened, listed or inspected."""


class ArchiveIOError(TarmacError):
    """Reading a source file or writing the archive stream failed mid-way."""
