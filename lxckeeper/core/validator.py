"""Input validation for container names, snapshot ids and archive names."""
import re

from lxckeeper.core.errors import ValidationError

CONTAINER_NAME_PATTERN = re.compile(r'^[A-Za-z0-9_-]+$')
SNAPSHOT_NAME_PATTERN = re.compile(r'^[A-Za-z0-9_-]+$')
MAX_CONTAINER_NAME = 64


def is_valid_container_name(name) -> bool:
    """Container names: 1-64 chars of letters, digits, '-' and '_',
    not starting or ending with '-' or '_'."""
    if not name or not isinstance(name, str):
        return False
    if len(name) > MAX_CONTAINER_NAME:
        return False
    if name[0] in '-_' or name[-1] in '-_':
        return False
    return bool(CONTAINER_NAME_PATTERN.match(name))


def validate_container_name(name) -> str:
    if not is_valid_container_name(name):
        raise ValidationError(
            f"Invalid container name {name!r}. Container names must be 1-64 characters long, "
            "contain only letters, numbers, hyphens, and underscores, and must not start "
            "or end with a hyphen or underscore."
        )
    return name


def validate_snapshot_name(name) -> str:
    if not name or not isinstance(name, str) or not SNAPSHOT_NAME_PATTERN.match(name):
        raise ValidationError(
            f"Invalid snapshot name {name!r}. Snapshot names can only contain letters, "
            "numbers, hyphens and underscores."
        )
    return name


def validate_archive_filename(filename) -> str:
    """Reject anything that could escape the container's archive directory."""
    if not filename or not isinstance(filename, str) or '/' in filename or '..' in filename \
            or '\0' in filename:
        raise ValidationError(f"Invalid backup filename {filename!r}")
    return filename
