import argparse
import logging
import sys
import textwrap
from pathlib import Path

from .archive import ARCHIVE_FORMATS, BuildOptions, create_archive
from .builder import DEFAULT_HASH_ALGORITHM
from .errors import TarmacError
from .manifest.store import ManifestStore
from .settings import (
    BuildSettings,
    SETTING_COMPRESS,
    SETTING_COMPRESS_LEVEL,
    SETTING_FORMAT,
    SETTING_HASH_ALGORITHM,
    SETTING_LOGGING_LEVEL,
    SETTING_LOGGING_PATH,
    SETTING_MANIFEST_PATH,
)
from .utils.profiling import profile_main

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _fail(message) -> None:
    """Report a fatal error on stderr and exit; stdout must then be treated as invalid."""
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(-1)


def _typed_setting(settings: BuildSettings, key: str, expected_type: type, default):
    value = settings.get(key, default)
    if not isinstance(value, expected_type):
        raise ValueError(f"Setting {key} in {settings.settings_file} must be of type {expected_type.__name__}")
    return value


def _configure_logging(args, settings: BuildSettings):
    """Send logs to --log-file or logging.path from settings, or to stderr with --verbose.

    Standard output carries the archive, so logs never go there.
    """
    log_file = args.log_file or settings.get(SETTING_LOGGING_PATH)
    log_level = args.log_level or settings.get(SETTING_LOGGING_LEVEL) or ('DEBUG' if args.verbose else 'INFO')

    if log_file:
        logging.basicConfig(filename=str(log_file), level=str(log_level).upper(), format=LOG_FORMAT, force=True)
    elif args.verbose:
        logging.basicConfig(stream=sys.stderr, level=str(log_level).upper(), format=LOG_FORMAT, force=True)


@profile_main
def tarmac_main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog='tarmac',
        description='Write a tar archive of a directory to standard output, storing each distinct file content '
                    'once under SOURCE/.backing_store and adding every file as a hard link to its stored copy.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent('''
            Examples:
              tarmac /path/to/photos > photos.tar
              tarmac --compress --manifest photos.manifest /path/to/photos > photos.tar.gz

            A directory named .backing_store directly under SOURCE is not archived.
            ''').strip()
    )
    parser.add_argument(
        'source',
        metavar='SOURCE',
        help='Directory to archive')
    parser.add_argument(
        '--compress',
        action=argparse.BooleanOptionalAction,
        default=None,
        help='Compress output using gzip (default: archive.compress from settings, otherwise off)')
    parser.add_argument(
        '--format',
        choices=sorted(ARCHIVE_FORMATS),
        help='Tar format of the archive (default: archive.format from settings, otherwise pax)')
    parser.add_argument(
        '--config',
        metavar='PATH',
        help='Path to settings.toml. If not provided, uses TARMAC_CONFIG environment variable or '
             '$XDG_CONFIG_HOME/tarmac/settings.toml.')
    parser.add_argument(
        '--manifest',
        metavar='DIR',
        help='Write a manifest of stored blobs and links to this directory, which must be empty or missing')
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Log every stored blob and link to standard error')
    parser.add_argument(
        '--log-file',
        metavar='PATH',
        help='Path to log file for operation logging. If not provided, uses logging.path from settings or no '
             'logging.')
    parser.add_argument(
        '--log-level',
        metavar='LEVEL',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Defaults to INFO, or DEBUG with --verbose.')

    args = parser.parse_args(argv)

    try:
        settings = BuildSettings(Path(args.config) if args.config else None)
        _configure_logging(args, settings)

        manifest_path = args.manifest or settings.get(SETTING_MANIFEST_PATH)
        options = BuildOptions(
            compress=args.compress if args.compress is not None else _typed_setting(
                settings, SETTING_COMPRESS, bool, False),
            compress_level=_typed_setting(settings, SETTING_COMPRESS_LEVEL, int, 6),
            archive_format=args.format or _typed_setting(settings, SETTING_FORMAT, str, 'pax'),
            hash_algorithm=_typed_setting(settings, SETTING_HASH_ALGORITHM, str, DEFAULT_HASH_ALGORITHM),
            manifest_path=Path(manifest_path) if manifest_path else None,
        )
        if not 0 <= options.compress_level <= 9:
            raise ValueError(f"Setting {SETTING_COMPRESS_LEVEL} must be between 0 and 9")

        create_archive(args.source, sys.stdout.buffer, options)
    except (TarmacError, OSError, ValueError) as e:
        _fail(e)


@profile_main
def manifest_main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog='tarmac-manifest',
        description='Display the blobs and links recorded in a manifest written by tarmac --manifest.')
    parser.add_argument(
        'manifest',
        metavar='DIR',
        help='Manifest directory')

    args = parser.parse_args(argv)

    try:
        with ManifestStore(Path(args.manifest)) as store:
            info = store.read_info()
            for line in store.inspect():
                print(line)
    except (OSError, ValueError) as e:
        _fail(e)

    print(f"source {info.source_path} as {info.root_archive_path} ({info.archive_format}, "
          f"{'gzip' if info.compressed else 'uncompressed'}, {info.hash_algorithm})")
    print(f"blobs {info.blob_count} ({info.stored_size} bytes), links {info.link_count} ({info.linked_size} bytes)")


if __name__ == '__main__':
    tarmac_main()
