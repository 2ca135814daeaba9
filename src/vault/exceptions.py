"""
Custom exceptions for the vault package.
"""


class ShieldError(Exception):
    """Base exception for all shield errors."""
    pass


class VaultError(ShieldError):
    """Error related to the backup vault."""
    pass


class IndexCorruptionError(VaultError):
    """Snapshot index file cannot be parsed."""
    pass


class SnapshotNotFoundError(VaultError):
    """Requested snapshot does not exist in the index."""
    def __init__(self, message: str, snapshot_ref: str = None):
        super().__init__(message)
        self.snapshot_ref = snapshot_ref


class RestoreLockedError(VaultError):
    """Another restore or cleanup holds the restore lock."""
    pass


class IndexWriteError(VaultError):
    """Snapshot index could not be written; the batch was not recorded."""
    def __init__(self, message: str, snapshot_id: str = None):
        super().__init__(message)
        self.snapshot_id = snapshot_id
