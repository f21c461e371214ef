"""Tests for name validation."""
import pytest

from lxckeeper.core.errors import ValidationError
from lxckeeper.core.validator import (
    is_valid_container_name,
    validate_archive_filename,
    validate_snapshot_name,
)


@pytest.mark.parametrize('name', ['web1', 'my_app-2', 'a', 'x' * 64])
def test_valid_container_names(name):
    assert is_valid_container_name(name)


@pytest.mark.parametrize('name', ['', '-web', 'web_', 'has space', 'dot.name', 'x' * 65, None])
def test_invalid_container_names(name):
    assert not is_valid_container_name(name)


def test_snapshot_names():
    assert validate_snapshot_name('before-upgrade_2') == 'before-upgrade_2'
    with pytest.raises(ValidationError):
        validate_snapshot_name('snap;rm -rf')


@pytest.mark.parametrize('filename', ['../x.tar.xz', 'dir/x.tar.xz', 'x\0.tar.xz', None])
def test_unsafe_archive_filenames(filename):
    with pytest.raises(ValidationError):
        validate_archive_filename(filename)
