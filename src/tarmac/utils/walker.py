import functools
import os
import stat
from pathlib import Path, PurePosixPath
from typing import Callable, Collection

from ..errors import FilesystemError


class FileContext:
    """Context object for a file or directory discovered while walking the source tree.

    The stat result is the lstat() of the entry taken when its parent directory was
    listed, so symbolic links report their own mode rather than their target's. The
    archive_path property is the POSIX path the entry occupies inside the archive; the
    root context carries the name of the source directory as it appears in the archive.
    """
    def __init__(self, parent, name: str, path: Path | None = None, st: os.stat_result | None = None):
        self._parent: FileContext | None = parent
        self._name: str = name
        self._stat: os.stat_result | None = st
        self._path: Path | None = path

    @property
    def name(self) -> str:
        return self._name

    @property
    def parent(self) -> 'FileContext':
        if self._parent is None:
            raise LookupError("no parent")

        return self._parent

    @property
    def stat(self) -> os.stat_result:
        if self._stat is None:
            if self._path is None:
                raise LookupError("stat not available and path not provided")
            self._stat = self._path.stat(follow_symlinks=False)
        return self._stat

    @functools.cached_property
    def archive_path(self) -> PurePosixPath:
        """Get the path inside the archive, built by appending this name to the parent's."""
        if self._parent is None:
            return PurePosixPath(self._name)

        return self._parent.archive_path / self._name

    def is_directory(self) -> bool:
        """True only for a real directory; a symbolic link to a directory is not one."""
        return stat.S_ISDIR(self.stat.st_mode)


def list_directory(
        path: Path,
        parent: FileContext,
        excluded_names: Collection[str] = ()) -> list[tuple[Path, FileContext]]:
    """Read every entry of a directory before any of them is processed.

    Entries are sorted by name so identical trees are visited in the same order. Names in
    excluded_names are dropped before their metadata is read.

    Raises:
        FilesystemError: The directory cannot be opened or listed, or an entry cannot be
                         stat'ed
    """
    try:
        children = sorted(path.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise FilesystemError(f"cannot list directory {path}: {e.strerror or e}") from e

    entries = []
    for child in children:
        if child.name in excluded_names:
            continue

        try:
            st = child.lstat()
        except OSError as e:
            raise FilesystemError(f"cannot stat {child}: {e.strerror or e}") from e

        entries.append((child, FileContext(parent, child.name, path=child, st=st)))

    return entries


def walk_directory(
        path: Path,
        context: FileContext,
        handle_entry: Callable[[Path, FileContext], None],
        *,
        is_root: bool = False,
        reserved_name: str | None = None) -> None:
    """Dispatch every child of a directory to handle_entry, in name order.

    At the root of the walk, a child named reserved_name is skipped entirely. The handler
    is responsible for recursing into subdirectories, usually by calling walk_directory()
    again with is_root left False.

    Example:
        def handle(child_path, child_context):
            if child_context.is_directory():
                walk_directory(child_path, child_context, handle)
            else:
                print(child_context.archive_path)

        walk_directory(root, FileContext(None, root.name, root), handle,
                       is_root=True, reserved_name='.backing_store')
    """
    excluded_names = (reserved_name,) if is_root and reserved_name is not None else ()

    for child_path, child_context in list_directory(path, context, excluded_names):
        handle_entry(child_path, child_context)
