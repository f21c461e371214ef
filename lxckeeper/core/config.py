"""lxckeeper runtime configuration and backup settings."""
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from lxckeeper.core.errors import ValidationError
from lxckeeper.core.logger import get_logger

logger = get_logger(__name__)

DEFAULT_LXC_PATH = "/var/lib/lxc"
DEFAULT_NOTIFY_SOCKET = "/var/run/mos-notify.sock"

# Config search paths (ordered by proximity to current run)
CONFIG_PATHS = [
    "./lxckeeper.yml",
    str(Path.home() / ".config" / "lxckeeper" / "lxckeeper.yml"),
    "/etc/lxckeeper/lxckeeper.yml",
]

BACKING_DIRECTORY = "directory"
BACKING_BTRFS = "btrfs"
BACKING_STORAGES = (BACKING_DIRECTORY, BACKING_BTRFS)


@dataclass
class BackupSettings:
    """Backup defaults; per-call overrides win field by field.

    Attributes:
        path: Backup root directory (archives land in <path>/<container>/)
        keep: Number of archives to retain per container (>= 1)
        compression: xz compression level 0-9
        threads: xz thread count (0 = half of the CPUs, at least one)
        use_snapshot: Archive from a temporary snapshot on btrfs containers
    """

    path: Optional[str] = None
    keep: int = 3
    compression: int = 6
    threads: int = 0
    use_snapshot: bool = False

    # Accepted spellings for overrides coming from the CLI or older configs
    ALIASES = {
        "backup_path": "path",
        "backups_to_keep": "keep",
        "retention": "keep",
    }

    def merged(self, overrides: Optional[Dict[str, Any]] = None) -> "BackupSettings":
        """Return a copy with non-None overrides applied, then validate it."""
        if not overrides:
            result = replace(self)
        else:
            known = {f.name for f in fields(self)}
            changes = {}
            for key, value in overrides.items():
                name = self.ALIASES.get(key, key)
                if name not in known:
                    raise ValidationError(f"Unknown backup setting: {key}")
                if value is not None:
                    changes[name] = value
            result = replace(self, **changes)
        result.validate()
        return result

    def validate(self) -> None:
        """Raise ValidationError when a field is out of range."""
        if isinstance(self.keep, bool) or not isinstance(self.keep, int) or self.keep < 1:
            raise ValidationError(f"Retention count must be an integer >= 1 (got {self.keep!r})")
        if isinstance(self.compression, bool) or not isinstance(self.compression, int) \
                or not 0 <= self.compression <= 9:
            raise ValidationError(f"Compression level must be between 0 and 9 (got {self.compression!r})")
        if isinstance(self.threads, bool) or not isinstance(self.threads, int) or self.threads < 0:
            raise ValidationError(f"Thread count must be an integer >= 0 (got {self.threads!r})")
        if not isinstance(self.use_snapshot, bool):
            raise ValidationError(f"use_snapshot must be a boolean (got {self.use_snapshot!r})")


@dataclass
class KeeperConfig:
    """Host-level configuration, read-only to the lifecycle engine."""

    lxc_path: str = DEFAULT_LXC_PATH
    backing_storage: str = BACKING_DIRECTORY
    notify_socket: str = DEFAULT_NOTIFY_SOCKET
    backup: BackupSettings = field(default_factory=BackupSettings)

    @property
    def use_btrfs(self) -> bool:
        return self.backing_storage == BACKING_BTRFS

    @property
    def icons_path(self) -> Path:
        return Path(self.lxc_path) / "custom_icons"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeeperConfig":
        """Build config from a parsed YAML mapping."""
        backup_data = data.get("backup") or {}
        if not isinstance(backup_data, dict):
            raise ValidationError("'backup' section must be a mapping")

        backup = BackupSettings().merged(backup_data)
        config = cls(
            lxc_path=str(data.get("lxc_path") or DEFAULT_LXC_PATH),
            backing_storage=data.get("backing_storage") or BACKING_DIRECTORY,
            notify_socket=str(data.get("notify_socket") or DEFAULT_NOTIFY_SOCKET),
            backup=backup,
        )
        if config.backing_storage not in BACKING_STORAGES:
            raise ValidationError(
                f"backing_storage must be one of {', '.join(BACKING_STORAGES)} "
                f"(got {config.backing_storage!r})"
            )
        return config


def find_config(config_path: Optional[str] = None) -> Optional[Path]:
    """Locate the active config file, or None when there is none."""
    if config_path:
        return Path(config_path)

    if env_config := os.environ.get("LXCKEEPER_CONFIG"):
        return Path(env_config)

    for path in CONFIG_PATHS:
        if Path(path).exists():
            return Path(path)

    return None


def load_config(config_path: Optional[str] = None) -> KeeperConfig:
    """Load configuration from YAML, applying environment overrides.

    Environment variables:
        LXCKEEPER_CONFIG: Config file path
        LXCKEEPER_LXC_PATH: Container root directory
        LXCKEEPER_BACKUP_PATH: Backup root directory

    Returns:
        KeeperConfig (defaults when no config file exists)
    """
    path = find_config(config_path)
    data: Dict[str, Any] = {}

    if path is not None:
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValidationError(f"Config file {path} must contain a mapping")
        logger.debug(f"Loaded config from {path}")

    config = KeeperConfig.from_dict(data)

    if lxc_path := os.environ.get("LXCKEEPER_LXC_PATH"):
        config.lxc_path = lxc_path
    if backup_path := os.environ.get("LXCKEEPER_BACKUP_PATH"):
        config.backup.path = backup_path

    return config
