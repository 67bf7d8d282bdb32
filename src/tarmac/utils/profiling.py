"""cProfile support for the tarmac command.

When the TARMAC_PROFILE environment variable names a directory, the wrapped entry
point is profiled and its stats are dumped to
TARMAC_PROFILE/{timestamp_ms}_{pid}/{prefix}_{pid}_{seq}.prof.
"""
import cProfile
import functools
import itertools
import os
import time
from pathlib import Path
from typing import Callable, TypeVar, ParamSpec

P = ParamSpec('P')
T = TypeVar('T')

PROFILE_ENVIRONMENT_VARIABLE = 'TARMAC_PROFILE'

# Sequence numbers keep file names unique when one process profiles several calls
_profile_counter = itertools.count()


def get_profile_dir() -> Path | None:
    """Get the directory for this run's profile data, or None if profiling is off."""
    profile_path = os.environ.get(PROFILE_ENVIRONMENT_VARIABLE)
    if profile_path:
        return Path(profile_path) / f"{int(time.time() * 1000)}_{os.getpid()}"
    return None


def generate_profile_filename(prefix: str = "profile") -> str:
    """Generate a file name like "main_54398_0.prof" unique within this process."""
    return f"{prefix}_{os.getpid()}_{next(_profile_counter)}.prof"


def profile_function(func: Callable[P, T], prefix: str = "profile") -> Callable[P, T]:
    """Wrap func so that it runs under cProfile when TARMAC_PROFILE is set."""
    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        profile_dir = get_profile_dir()

        if profile_dir is None:
            return func(*args, **kwargs)

        profile_dir.mkdir(parents=True, exist_ok=True)
        profile_file = profile_dir / generate_profile_filename(prefix)

        profiler = cProfile.Profile()
        try:
            profiler.enable()
            return func(*args, **kwargs)
        finally:
            profiler.disable()
            profiler.dump_stats(str(profile_file))

    return wrapper


def profile_main(func: Callable[P, T]) -> Callable[P, T]:
    """Decorator for command entry points, profiling them with the "main" prefix."""
    return profile_function(func, prefix="main")
