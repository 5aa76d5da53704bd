from __future__ import annotations


class QueueError(Exception):
    pass


class ConfigurationError(QueueError, ValueError):
    pass


class RangeError(QueueError, ValueError):
    pass


class EmptySetError(QueueError):
    pass


class LogicError(QueueError):
    pass


class StorageError(QueueError):
    pass


class TransientStorageError(StorageError):
    pass
