import os
import tomllib
from pathlib import Path

# Settings key constants
SETTING_COMPRESS = 'archive.compress'
SETTING_COMPRESS_LEVEL = 'archive.compress_level'
SETTING_FORMAT = 'archive.format'
SETTING_HASH_ALGORITHM = 'archive.hash_algorithm'
SETTING_MANIFEST_PATH = 'manifest.path'
SETTING_LOGGING_PATH = 'logging.path'
SETTING_LOGGING_LEVEL = 'logging.level'


def default_settings_path() -> Path:
    """Locate settings.toml from TARMAC_CONFIG, falling back to the XDG config directory."""
    configured = os.environ.get('TARMAC_CONFIG')
    if configured:
        return Path(configured)

    config_home = os.environ.get('XDG_CONFIG_HOME')
    if config_home:
        return Path(config_home) / 'tarmac' / 'settings.toml'
    return Path.home() / '.config' / 'tarmac' / 'settings.toml'


class BuildSettings:
    """Read-only key-value view of a TOML settings file.

    The class does not know which keys exist or what they mean; callers interpret the
    values. A missing file behaves like an empty one.

    Example:
        settings = BuildSettings(Path('~/.config/tarmac/settings.toml').expanduser())
        compress = settings.get(SETTING_COMPRESS, False)
        archive_format = settings.get('archive.format', 'pax')
    """

    def __init__(self, settings_file: Path | None = None):
        """
        Args:
            settings_file: TOML file to load, or None for default_settings_path()

        Raises:
            tomllib.TOMLDecodeError: The file exists but is not valid TOML
        """
        if settings_file is None:
            settings_file = default_settings_path()

        self._settings_file = settings_file
        self._settings = {}

        if settings_file.exists():
            with open(settings_file, 'rb') as f:
                self._settings = tomllib.load(f)

    @property
    def settings_file(self) -> Path:
        return self._settings_file

    def get(self, key: str, default=None):
        """Get a setting value by dotted key path.

        'archive.format' reads settings['archive']['format']. The default is returned when
        any part of the path is missing or an intermediate value is not a table.

        Examples:
            >>> settings.get(SETTING_FORMAT, 'pax')
            'gnu'
            >>> settings.get('nonexistent.key', 'fallback')
            'fallback'
        """
        value = self._settings

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value
