"""Common write-once store exceptions."""

from typing import Any

# isort: unique-list
__all__ = [
    'BorrowConflictError',
    'DuplicateWriteError',
    'NonContiguousError',
    'NotFoundError',
    'ReadOnlyError',
    'StoreError',
    'TypeMismatchError',
    'WriteOnceBaseException',
]


class WriteOnceBaseException(Exception):
    """Base exception for write-once store logic.

    Parameters:
        message: A human-readable description of the exception.
        context: Machine-readable data.

    Example:
        >>> WriteOnceBaseException('repeat write', name='list')
        WriteOnceBaseException('repeat write', name='list')
    """

    def __init__(self, message: str, /, **context: Any) -> None:
        super().__init__(message)
        self.context = context

    def __repr__(self, /) -> str:
        cls_name, args = self.__class__.__name__, [repr(self.args[0])]
        args.extend(f'{name}={value!r}' for name, value in self.context.items())
        return f'{cls_name}({", ".join(args)})'


class StoreError(WriteOnceBaseException):
    """Error when reading, writing, or viewing an attribute."""


class DuplicateWriteError(StoreError):
    """An attribute was written more than once. The store is left unmodified."""


class NotFoundError(StoreError):
    """An attribute was read or viewed before being written."""


class TypeMismatchError(StoreError):
    """The stored value is not of the requested type or element type."""


class NonContiguousError(StoreError):
    """The stored buffer is not a single dense (C-contiguous) run of memory."""


class ReadOnlyError(StoreError):
    """A mutable view was requested for a buffer that does not permit writes."""


class BorrowConflictError(StoreError):
    """The attribute is already viewed in a way that forbids the requested access.

    At any instant, an attribute may have either one exclusive (mutable) view or any
    number of shared (read-only) views.
    """
