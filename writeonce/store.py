"""Write-once attribute storage.

An :class:`AttributeStore` maps attribute names to opaque values. Each name may be
written at most once, and a written value is never replaced or removed while the store
is alive. Once a caller has observed an attribute, its identity (and, for buffers, its
memory) is therefore fixed, which is what allows :mod:`writeonce.view` to hand out
direct views into buffer attributes.

The store is shared by host code and by scripts run through
:class:`writeonce.interpreter.Interpreter`. Every operation runs inside the store's
critical section (a reentrant :class:`writeonce.sync.Mutex`), which several stores may
share.
"""

import contextlib
import functools
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional, TypeVar

import structlog

from . import log
from .exception import (
    BorrowConflictError,
    DuplicateWriteError,
    NotFoundError,
    TypeMismatchError,
)
from .sync import BorrowFlag, Mutex, SyncError
from .value import ValueInfo, classify

__all__ = ['AttributeStore', 'with_transaction']

RT = TypeVar('RT')
T = TypeVar('T')


def with_transaction(wrapped: Callable[..., RT]) -> Callable[..., RT]:
    """Decorator applied to :class:`AttributeStore` methods to begin a transaction."""

    @functools.wraps(wrapped)
    def wrapper(self: 'AttributeStore', /, *args: Any, **kwargs: Any) -> RT:
        with self.transaction():
            return wrapped(self, *args, **kwargs)

    return wrapper


@dataclass
class AttributeStore:
    """A mapping of attribute names to values, where each name is written once.

    Parameters:
        mutex: The critical section guarding this store. Pass the same mutex to several
            stores to serialize them together.
        values: Maps written names to their values.
        written: The names already written. Always equal to the keys of
            :attr:`values`.
        borrows: Maps attribute names to their outstanding views.
    """

    mutex: Mutex = field(default_factory=Mutex)
    values: dict[str, Any] = field(default_factory=dict, init=False, repr=False)
    written: set[str] = field(default_factory=set, init=False, repr=False)
    borrows: dict[str, BorrowFlag] = field(default_factory=dict, init=False, repr=False)
    logger: log.Logger = field(default_factory=structlog.get_logger, repr=False)

    def __contains__(self, name: object, /) -> bool:
        with self.transaction():
            return name in self.written

    def __getitem__(self, name: str, /) -> Any:
        return self.get(name)

    def __iter__(self, /) -> Iterator[str]:
        with self.transaction():
            return iter(list(self.values))

    def __len__(self, /) -> int:
        with self.transaction():
            return len(self.written)

    @contextlib.contextmanager
    def transaction(self, /, *, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the store's critical section.

        All methods already use this reentrant context manager, but it may also be used
        to group several operations into a larger atomic transaction.

        Parameters:
            timeout: How long to wait for the critical section. See
                :meth:`writeonce.sync.Mutex.acquire`.

        Raises:
            writeonce.sync.SyncError: If the critical section could not be acquired.
        """
        self.mutex.acquire(timeout=timeout)
        try:
            yield
        finally:
            self.mutex.release()

    @with_transaction
    def add(self, name: str, value: Any, /) -> None:
        """Write an attribute.

        The store keeps a reference to the value, not a copy.

        Parameters:
            name: A nonempty attribute name that has not been written yet.
            value: Any object.

        Raises:
            ValueError: If the name is empty or not a string.
            DuplicateWriteError: If the attribute was already written. The store is not
                modified.
        """
        if not isinstance(name, str) or not name:
            raise ValueError('attribute name must be a nonempty string')
        if name in self.written:
            raise DuplicateWriteError('attribute already written', name=name)
        try:
            self.values[name] = value
            self.written.add(name)
        except BaseException:
            # A timeout may interrupt the write. Leave no half-written entry.
            self.values.pop(name, None)
            self.written.discard(name)
            raise
        self.logger.debug('Attribute written', name=name, type=type(value).__name__)

    @with_transaction
    def peek(self, name: str, /) -> Any:
        """Read an attribute without checking for outstanding views.

        Raises:
            NotFoundError: If the attribute was never written.
        """
        try:
            return self.values[name]
        except KeyError as exc:
            raise NotFoundError('attribute not written', name=name) from exc

    @with_transaction
    def get(self, name: str, /) -> Any:
        """Read an attribute.

        The value stays in the store. The caller receives the same object, not a copy.

        Raises:
            NotFoundError: If the attribute was never written.
            BorrowConflictError: If the attribute has an outstanding mutable view.
        """
        value = self.peek(name)
        flag = self.borrows.get(name)
        if flag and flag.exclusive:
            raise BorrowConflictError('attribute has a mutable view open', name=name)
        return value

    def extract(self, name: str, cls: type[T], /) -> T:
        """Read an attribute that must be an instance of a given type.

        Raises:
            NotFoundError: If the attribute was never written.
            TypeMismatchError: If the value is not an instance of ``cls``.
        """
        value = self.get(name)
        if not isinstance(value, cls):
            raise TypeMismatchError(
                'attribute has the wrong type',
                name=name,
                expected=cls.__name__,
                actual=type(value).__name__,
            )
        return value

    def describe(self, name: str, /) -> ValueInfo:
        """Classify an attribute's value.

        Raises:
            NotFoundError: If the attribute was never written.
        """
        with self.transaction():
            return classify(self.peek(name))

    def names(self, /) -> frozenset[str]:
        """A snapshot of the attribute names written so far."""
        with self.transaction():
            return frozenset(self.written)

    @with_transaction
    def borrow(self, name: str, /, *, exclusive: bool = False) -> None:
        """Register a view on an attribute.

        Parameters:
            name: A written attribute name.
            exclusive: Whether the view is mutable.

        Raises:
            BorrowConflictError: If an exclusive view is requested while any view is
                open, or if any view is requested while an exclusive view is open.
        """
        flag = self.borrows.setdefault(name, BorrowFlag())
        try:
            if exclusive:
                flag.borrow_exclusive()
            else:
                flag.borrow_shared()
        except SyncError as exc:
            raise BorrowConflictError(
                'attribute is already viewed',
                name=name,
                readers=flag.readers,
                exclusive=flag.exclusive,
            ) from exc

    @with_transaction
    def unborrow(self, name: str, /) -> None:
        """Unregister a view previously registered with :meth:`borrow`."""
        flag = self.borrows[name]
        flag.unborrow()
        if not flag.borrowed:
            del self.borrows[name]
