"""Write-once attributes shared between host code and Python scripts."""

from .exception import (
    BorrowConflictError,
    DuplicateWriteError,
    NonContiguousError,
    NotFoundError,
    ReadOnlyError,
    StoreError,
    TypeMismatchError,
    WriteOnceBaseException,
)
from .interpreter import ExecutionError, Interpreter
from .store import AttributeStore
from .sync import Mutex, SyncError
from .value import Kind, ValueInfo, classify
from .view import ReadView, WriteView, acquire, acquire_mut

__all__ = [
    'AttributeStore',
    'BorrowConflictError',
    'DuplicateWriteError',
    'ExecutionError',
    'Interpreter',
    'Kind',
    'Mutex',
    'NonContiguousError',
    'NotFoundError',
    'ReadOnlyError',
    'ReadView',
    'StoreError',
    'SyncError',
    'TypeMismatchError',
    'ValueInfo',
    'WriteOnceBaseException',
    'WriteView',
    'acquire',
    'acquire_mut',
    'classify',
]

__version__ = '0.1.0'
