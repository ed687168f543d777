from pathlib import Path
from utils.errors import ValidationError
import re

DEFAULT_PROFILE = "default"
PROFILE_DIR_PREFIX = ".openclaw"
CONFIG_FILENAME = "openclaw.json"
PROFILE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,32}$")


def normalize_profile_name(name):
    return str(name or "").strip() or DEFAULT_PROFILE


def validate_profile_name(name):
    name = normalize_profile_name(name)
    if name == DEFAULT_PROFILE:
        return name
    if not PROFILE_NAME_PATTERN.match(name):
        raise ValidationError(
            "Invalid profile name. Use 1-32 letters, digits, '-' or '_'."
        )
    return name


class ProfilePaths:
    """Filesystem layout of profiles below a state root (normally $HOME)."""

    def __init__(self, state_root):
        self.state_root = Path(state_root).expanduser()

    def directory(self, name) -> Path:
        name = validate_profile_name(name)
        if name == DEFAULT_PROFILE:
            return self.state_root / PROFILE_DIR_PREFIX
        return self.state_root / f"{PROFILE_DIR_PREFIX}-{name}"

    def config_path(self, name) -> Path:
        return self.directory(name) / CONFIG_FILENAME

    def name_from_directory(self, dirname):
        if dirname == PROFILE_DIR_PREFIX:
            return DEFAULT_PROFILE
        prefix = f"{PROFILE_DIR_PREFIX}-"
        if not dirname.startswith(prefix):
            return None
        name = dirname[len(prefix):]
        if name == DEFAULT_PROFILE or not PROFILE_NAME_PATTERN.match(name):
            return None
        return name
