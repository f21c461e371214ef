"""Data models for lxckeeper."""
from lxckeeper.models.archive import BackupArchive, SnapshotInfo
from lxckeeper.models.operation import (
    BackupTicket,
    ConvertTicket,
    Operation,
    OperationKind,
    OperationOutcome,
    RestoreTicket,
    SnapshotTicket,
    Ticket,
)

__all__ = [
    'BackupArchive',
    'SnapshotInfo',
    'Operation',
    'OperationKind',
    'OperationOutcome',
    'Ticket',
    'BackupTicket',
    'RestoreTicket',
    'ConvertTicket',
    'SnapshotTicket',
]
