import configparser
import logging
import os
from dataclasses import dataclass, fields

logger = logging.getLogger(__name__)

CONFIG_FILE = os.path.expanduser("~/.gitwrappedrc")


@dataclass(frozen=True)
class Palette:
    """ANSI escape sequences used by the report renderer."""

    reset: str = "\033[0m"
    bold: str = "\033[1m"
    red: str = "\033[0;31m"
    green: str = "\033[0;32m"
    yellow: str = "\033[1;33m"
    blue: str = "\033[0;34m"
    magenta: str = "\033[0;35m"
    cyan: str = "\033[0;36m"
    white: str = "\033[1;37m"


PLAIN = Palette(**{f.name: "" for f in fields(Palette)})


def config_path():
    return os.environ.get("GIT_WRAPPED_CONFIG", CONFIG_FILE)


def _unescape(name, value, default):
    # rc files store escapes literally, e.g. \033[0;31m
    if not value.isascii():
        return value
    try:
        return value.encode("ascii").decode("unicode_escape")
    except UnicodeDecodeError as e:
        logger.warning("Ignoring malformed color %r = %r: %s", name, value, e)
        return default


def load_palette(path=None, enabled=True):
    """Build a Palette from the [colors] section of the rc file.

    Keys not present in the file keep their default escape sequence. When
    colors are disabled, or NO_COLOR is set, every entry is empty.
    """
    if not enabled or os.environ.get("NO_COLOR"):
        return PLAIN

    path = path or config_path()
    config = configparser.ConfigParser(interpolation=None)
    try:
        config.read(path, encoding="utf-8")
    except (configparser.Error, UnicodeDecodeError) as e:
        logger.warning("Ignoring unreadable config file %s: %s", path, e)
        return Palette()

    defaults = Palette()
    overrides = {}
    for f in fields(Palette):
        value = config.get("colors", f.name, fallback=getattr(defaults, f.name))
        overrides[f.name] = _unescape(f.name, value, getattr(defaults, f.name))
    return Palette(**overrides)
