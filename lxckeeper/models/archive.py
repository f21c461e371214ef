"""Backup archive and snapshot records."""
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

ARCHIVE_SUFFIX = ".tar.xz"
TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S-%f"


def archive_filename(container: str, when: datetime) -> str:
    """Build '<container>_<sortable timestamp>.tar.xz'."""
    return f"{container}_{when.strftime(TIMESTAMP_FORMAT)}{ARCHIVE_SUFFIX}"


def is_archive_of(filename: str, container: str) -> bool:
    """True if filename looks like an archive produced for container."""
    return filename.startswith(f"{container}_") and filename.endswith(ARCHIVE_SUFFIX)


@dataclass
class BackupArchive:
    """A compressed container tree on disk."""
    container: str
    path: Path
    size: int
    created: datetime

    @property
    def filename(self) -> str:
        return self.path.name

    def to_dict(self) -> dict:
        return {
            'container': self.container,
            'filename': self.filename,
            'size': self.size,
            'created': self.created.isoformat(),
        }


@dataclass
class SnapshotInfo:
    """A copy-on-write snapshot of a container."""
    container: str
    name: str
    timestamp: Optional[str] = None
    size: int = 0

    def to_dict(self) -> dict:
        return {
            'container': self.container,
            'name': self.name,
            'timestamp': self.timestamp,
            'size': self.size,
        }
