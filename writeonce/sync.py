"""Synchronization primitives.

Every store operation and every typed view runs inside a single critical section,
represented by a :class:`Mutex`. Both sides of the boundary (host code and scripts run
by :class:`writeonce.interpreter.Interpreter`) must hold the same mutex while touching
the store. A :class:`BorrowFlag` tracks the views outstanding on one attribute so that
an exclusive view never coexists with any other view.

Failures carry an :mod:`errno` code in their context, mirroring the error codes of the
equivalent POSIX mutex operations.
"""

import contextlib
import errno
import threading
import types
from typing import Any, Final, Iterator, Optional

from .exception import WriteOnceBaseException

__all__ = ['BorrowFlag', 'Mutex', 'SyncError']


class SyncError(WriteOnceBaseException):
    """Error raised by a synchronization primitive.

    Parameters:
        message: A human-readable description of the exception.
        errno: The error code.
    """

    def __init__(self, message: str, errno: int, /, **context: Any) -> None:
        super().__init__(message, errno=errno, **context)

    @staticmethod
    @contextlib.contextmanager
    def suppress(*errnos: int) -> Iterator[None]:
        """Suppress :class:`SyncError` with the given error codes.

        Example:
            >>> with SyncError.suppress(errno.EBUSY):
            ...     raise SyncError('busy', errno.EBUSY)
            >>> with SyncError.suppress(errno.EBUSY):
            ...     raise SyncError('timed out', errno.ETIMEDOUT)
            Traceback (most recent call last):
              ...
            writeonce.sync.SyncError: timed out
        """
        try:
            yield
        except SyncError as exc:
            if exc.context['errno'] not in errnos:
                raise


class Mutex:
    """A mutual exclusion lock with owner checking.

    Parameters:
        recursive: Whether the owning thread may acquire the mutex again without
            releasing it first. Each acquisition must be matched by a release.

    Example:
        >>> mutex = Mutex()
        >>> with mutex:
        ...     with mutex:
        ...         mutex.held
        True
        >>> mutex.held
        False
    """

    NO_OWNER: Final[int] = 0

    def __init__(self, /, *, recursive: bool = True) -> None:
        self.recursive = recursive
        self._lock = threading.Lock()
        self._owner = self.NO_OWNER
        self._count = 0

    def __repr__(self, /) -> str:
        return f'{self.__class__.__name__}(recursive={self.recursive!r})'

    def __enter__(self, /) -> None:
        self.acquire()

    def __exit__(
        self,
        _exc_type: Optional[type[BaseException]],
        _exc: Optional[BaseException],
        _traceback: Optional[types.TracebackType],
        /,
    ) -> Optional[bool]:
        self.release()
        return None

    @property
    def held(self, /) -> bool:
        """Whether the calling thread owns this mutex."""
        return self._owner == threading.get_ident()

    def acquire(self, /, *, timeout: Optional[float] = None) -> None:
        """Acquire the mutex.

        Parameters:
            timeout: ``None`` blocks indefinitely. A nonpositive timeout makes a single
                attempt. A positive timeout waits up to that many seconds.

        Raises:
            SyncError: ``EDEADLK`` if a non-recursive mutex is already owned by the
                calling thread, ``EBUSY`` if a single attempt failed, or ``ETIMEDOUT``
                if the timeout elapsed.
        """
        ident = threading.get_ident()
        if self._owner == ident:
            if not self.recursive:
                raise SyncError('mutex already held by this thread', errno.EDEADLK)
            self._count += 1
            return
        if timeout is None:
            self._lock.acquire()
        elif timeout <= 0:
            if not self._lock.acquire(blocking=False):
                raise SyncError('mutex is held by another thread', errno.EBUSY)
        elif not self._lock.acquire(timeout=timeout):
            raise SyncError(
                'mutex acquisition timed out',
                errno.ETIMEDOUT,
                timeout=timeout,
            )
        self._owner, self._count = ident, 1

    def release(self, /) -> None:
        """Release the mutex.

        Raises:
            SyncError: ``EPERM`` if the calling thread does not own the mutex.
        """
        if self._owner != threading.get_ident():
            raise SyncError('mutex not owned by this thread', errno.EPERM)
        self._count -= 1
        if self._count == 0:
            self._owner = self.NO_OWNER
            self._lock.release()


class BorrowFlag:
    """Bookkeeping for the views outstanding on a single attribute.

    A flag is either unborrowed, shared by one or more readers, or exclusively borrowed
    by one writer. The flag never blocks. Callers must hold the critical section while
    borrowing or returning, so waiting here would only deadlock.

    Example:
        >>> flag = BorrowFlag()
        >>> flag.borrow_shared()
        >>> flag.borrow_shared()
        >>> flag.readers
        2
        >>> flag.borrow_exclusive()
        Traceback (most recent call last):
          ...
        writeonce.sync.SyncError: attribute is already borrowed
    """

    def __init__(self, /) -> None:
        self.readers = 0
        self.exclusive = False

    def __repr__(self, /) -> str:
        cls_name = self.__class__.__name__
        return f'{cls_name}(readers={self.readers}, exclusive={self.exclusive})'

    @property
    def borrowed(self, /) -> bool:
        return self.exclusive or self.readers > 0

    def borrow_shared(self, /) -> None:
        if self.exclusive:
            raise SyncError('attribute is exclusively borrowed', errno.EBUSY)
        self.readers += 1

    def borrow_exclusive(self, /) -> None:
        if self.borrowed:
            raise SyncError('attribute is already borrowed', errno.EBUSY)
        self.exclusive = True

    def unborrow(self, /) -> None:
        """Return one borrow, exclusive first."""
        if self.exclusive:
            self.exclusive = False
        elif self.readers > 0:
            self.readers -= 1
        else:
            raise SyncError('attribute is not borrowed', errno.EPERM)
