"""Read and rewrite per-container LXC config files."""
import re
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from lxckeeper.core.config import BACKING_BTRFS, BACKING_DIRECTORY
from lxckeeper.core.errors import NotFoundError, ValidationError
from lxckeeper.core.logger import get_logger

logger = get_logger(__name__)

ROOTFS_KEY = 'lxc.rootfs.path'
UTS_KEY = 'lxc.uts.name'
ORDER_PREFIX = '#container_order='


class ContainerConfig:
    """The `config` file inside a container directory."""

    def __init__(self, path: Path):
        self.path = Path(path)

    @classmethod
    def for_container(cls, lxc_path, name: str) -> "ContainerConfig":
        return cls(Path(lxc_path) / name / 'config')

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> str:
        if not self.path.exists():
            raise NotFoundError(f"Config file not found: {self.path}")
        return self.path.read_text()

    def write(self, content: str) -> None:
        self.path.write_text(content)

    @staticmethod
    def _key_pattern(key: str) -> re.Pattern:
        return re.compile(rf'^{re.escape(key)}\s*=\s*(.*)$', re.MULTILINE)

    def get(self, key: str) -> Optional[str]:
        """Value of a `key = value` line, or None."""
        try:
            content = self.read()
        except NotFoundError:
            return None
        match = self._key_pattern(key).search(content)
        return match.group(1).strip() if match else None

    def set(self, key: str, value: str) -> None:
        """Replace a `key = value` line, appending it if missing."""
        content = self.read()
        line = f"{key} = {value}"
        pattern = self._key_pattern(key)
        if pattern.search(content):
            content = pattern.sub(lambda _: line, content)
        else:
            if content and not content.endswith('\n'):
                content += '\n'
            content += line + '\n'
        self.write(content)

    @property
    def rootfs(self) -> Optional[str]:
        return self.get(ROOTFS_KEY)

    @property
    def backing_storage(self) -> str:
        rootfs = self.rootfs or ''
        return BACKING_BTRFS if rootfs.startswith('btrfs:') else BACKING_DIRECTORY

    @property
    def is_btrfs(self) -> bool:
        return self.backing_storage == BACKING_BTRFS

    def set_rootfs(self, rootfs_path: Path, btrfs: bool) -> None:
        prefix = 'btrfs' if btrfs else 'dir'
        self.set(ROOTFS_KEY, f"{prefix}:{rootfs_path}")

    def set_hostname(self, name: str) -> None:
        self.set(UTS_KEY, name)

    # ==================== Ordering index ====================

    def get_index(self) -> Optional[int]:
        try:
            content = self.read()
        except NotFoundError:
            return None
        match = re.search(rf'^{re.escape(ORDER_PREFIX)}(.*)$', content, re.MULTILINE)
        if not match:
            return None
        try:
            return int(match.group(1).strip())
        except ValueError:
            return None

    def set_index(self, index: int) -> None:
        """Write `#container_order=N` (N >= 1) into the config."""
        if isinstance(index, bool) or not isinstance(index, int) or index < 1:
            raise ValidationError("Invalid index value. Index must be a positive integer starting from 1.")

        content = self.read()
        order_line = f"{ORDER_PREFIX}{index}"
        pattern = re.compile(rf'^{re.escape(ORDER_PREFIX)}.*$', re.MULTILINE)

        if pattern.search(content):
            content = pattern.sub(order_line, content)
        else:
            # Insert after the leading block of comments/blank lines
            lines = content.split('\n')
            insert_at = 0
            for i, existing in enumerate(lines):
                if existing.startswith('#') or existing.strip() == '':
                    insert_at = i + 1
                else:
                    break
            lines.insert(insert_at, order_line)
            content = '\n'.join(lines)

        self.write(content)


class ContainerIndex:
    """Ordering indices across all containers under one LXC path.

    Assignment is read-then-write without isolation; indices are an
    ordering hint, not a unique key.
    """

    def __init__(self, lxc_path):
        self.lxc_path = Path(lxc_path)

    def _config(self, name: str) -> ContainerConfig:
        return ContainerConfig.for_container(self.lxc_path, name)

    def indices(self, names: Iterable[str]) -> List[Tuple[str, int]]:
        result = []
        for name in names:
            index = self._config(name).get_index()
            if index is not None:
                result.append((name, index))
        return result

    def next_available(self, names: Iterable[str]) -> int:
        """max(existing index) + 1, or 1 when no container has one."""
        existing = [index for _, index in self.indices(names)]
        return max(existing) + 1 if existing else 1

    def assign_next(self, name: str, names: Iterable[str]) -> int:
        others = [n for n in names if n != name]
        index = self.next_available(others)
        self._config(name).set_index(index)
        logger.info(f"Assigned index {index} to {name}")
        return index

    def reindex(self, names: Iterable[str]) -> List[Tuple[str, int]]:
        """Renumber indexed containers to 1..M, keeping their order."""
        ordered = sorted(self.indices(names), key=lambda item: (item[1], item[0]))
        result = []
        for new_index, (name, old_index) in enumerate(ordered, start=1):
            if old_index != new_index:
                self._config(name).set_index(new_index)
                logger.debug(f"Reindexed {name}: {old_index} -> {new_index}")
            result.append((name, new_index))
        return result
