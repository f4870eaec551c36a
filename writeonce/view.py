"""Typed views into buffer attributes.

A view is a flat, element-typed :class:`memoryview` over the memory backing a buffer
attribute. No data is copied, so writes made through a :class:`WriteView` are visible
to every other holder of the buffer, including scripts, as soon as they happen.

Because the same memory is reachable both as an opaque value and as a view, views
follow a strict discipline:

* A view holds the store's critical section from the moment it is acquired until it is
  closed. Other threads cannot touch the store in the meantime.
* An attribute may have any number of read-only views or exactly one mutable view at a
  time. While a mutable view is open, :meth:`writeonce.store.AttributeStore.get` also
  refuses to hand out the value.
* While any view is open, the buffer remains exported, so its owner cannot resize or
  reallocate it (numpy and :class:`bytearray` both refuse).
* Closing a view releases its memoryview. Any reference retained past that point fails
  with :class:`ValueError` instead of reading stale memory.

Use views as context managers so that every exit path closes them::

    >>> import numpy as np
    >>> from writeonce.log import get_null_logger
    >>> from writeonce.store import AttributeStore
    >>> store = AttributeStore(logger=get_null_logger())
    >>> store.add('list', np.absolute(np.array([-1, -2, -3], dtype='int32')))
    >>> with acquire(store, 'list', 'int32') as numbers:
    ...     numbers.tolist()
    [1, 2, 3]
    >>> with acquire_mut(store, 'list', 'int32') as numbers:
    ...     numbers[0] = 10
    >>> store.get('list')
    array([10,  2,  3], dtype=int32)
"""

import collections.abc
import contextlib
import types
import weakref
from dataclasses import dataclass, field
from typing import (
    Any,
    ClassVar,
    Iterable,
    Iterator,
    Optional,
    TypeVar,
    Union,
    overload,
)

import numpy as np

from .exception import NonContiguousError, ReadOnlyError, TypeMismatchError
from .store import AttributeStore
from .value import ElementType, Kind, ValueInfo, classify, is_viewable, resolve_dtype

__all__ = ['ReadView', 'WriteView', 'acquire', 'acquire_mut']

ViewType = TypeVar('ViewType', bound='ReadView')


@dataclass(eq=False)
class ReadView(collections.abc.Sequence):  # type: ignore[type-arg]
    """A read-only, contiguous, typed window over a buffer attribute.

    Do not construct views directly. Use :func:`acquire` instead.

    Parameters:
        store: The store holding the attribute.
        name: The attribute name.
        dtype: The element type.
        info: The buffer's description at the time the view was acquired.
        memory: A flat memoryview with one item per element.
        stack: Undoes the acquisition (releases memory, the borrow, and the critical
            section) when closed.
    """

    mutable: ClassVar[bool] = False

    store: AttributeStore
    name: str
    dtype: np.dtype
    info: ValueInfo
    memory: memoryview = field(repr=False)
    stack: contextlib.ExitStack = field(repr=False)
    _finalizer: weakref.finalize = field(init=False, repr=False)

    def __post_init__(self, /) -> None:
        # A view dropped without being closed still returns its borrow.
        self._finalizer = weakref.finalize(self, self.stack.close)

    @classmethod
    def open(
        cls: type[ViewType],
        store: AttributeStore,
        name: str,
        element_type: ElementType,
        /,
        *,
        timeout: Optional[float] = None,
    ) -> ViewType:
        """Acquire a view.

        Parameters:
            store: The store holding the attribute.
            name: The attribute name.
            element_type: The expected element type. See
                :func:`writeonce.value.resolve_dtype`.
            timeout: How long to wait for the store's critical section.

        Raises:
            ValueError: If the element type is not numeric, or if the buffer holds a
                type that memoryview cannot index, such as complex numbers.
            writeonce.sync.SyncError: If the critical section could not be acquired.
            NotFoundError: If the attribute was never written.
            TypeMismatchError: If the attribute is not a buffer, or its element type is
                not ``element_type``.
            NonContiguousError: If the buffer is not a single dense run of memory.
            ReadOnlyError: If a mutable view was requested for a read-only buffer.
            BorrowConflictError: If the attribute's other views forbid this one.
        """
        dtype = resolve_dtype(element_type)
        with contextlib.ExitStack() as stack:
            stack.enter_context(store.transaction(timeout=timeout))
            value = store.peek(name)
            info = classify(value)
            if info.kind is not Kind.BUFFER:
                raise TypeMismatchError(
                    'attribute is not a buffer',
                    name=name,
                    kind=info.kind.value,
                )
            if info.dtype is None or info.dtype != dtype:
                raise TypeMismatchError(
                    'buffer has a different element type',
                    name=name,
                    expected=str(dtype),
                    actual=str(info.dtype),
                )
            if not is_viewable(dtype):
                raise ValueError(f'element type cannot be viewed: {dtype}')
            if not info.contiguous:
                raise NonContiguousError(
                    'buffer is not contiguous',
                    name=name,
                    shape=info.shape,
                )
            if cls.mutable and info.readonly:
                raise ReadOnlyError('buffer is read-only', name=name)
            store.borrow(name, exclusive=cls.mutable)
            stack.callback(store.unborrow, name)
            # Keeps the source exported so its owner cannot resize it.
            stack.enter_context(memoryview(value))
            elements = np.frombuffer(value, dtype=info.dtype)
            memory = stack.enter_context(memoryview(elements))
            if memory.format != dtype.char:
                memory = stack.enter_context(memory.cast('B').cast(dtype.char))
            if not cls.mutable:
                memory = stack.enter_context(memory.toreadonly())
            store.logger.debug(
                'View acquired',
                name=name,
                dtype=str(dtype),
                length=len(memory),
                mutable=cls.mutable,
            )
            return cls(store, name, dtype, info, memory, stack.pop_all())

    def __enter__(self: ViewType, /) -> ViewType:
        return self

    def __exit__(
        self,
        _exc_type: Optional[type[BaseException]],
        _exc: Optional[BaseException],
        _traceback: Optional[types.TracebackType],
        /,
    ) -> Optional[bool]:
        self.close()
        return None

    def __len__(self, /) -> int:
        return len(self.memory)

    @overload
    def __getitem__(self, index: int, /) -> Any:
        ...

    @overload
    def __getitem__(self, index: slice, /) -> list[Any]:
        ...

    def __getitem__(self, index: Union[int, slice], /) -> Any:
        if isinstance(index, slice):
            return self.memory[index].tolist()
        return self.memory[index]

    def __iter__(self, /) -> Iterator[Any]:
        return iter(self.memory)

    def tolist(self, /) -> list[Any]:
        """Copy the elements into a list."""
        return self.memory.tolist()

    @property
    def closed(self, /) -> bool:
        return not self._finalizer.alive

    def close(self, /) -> None:
        """Release the view. Closing an already closed view does nothing."""
        self._finalizer()


class WriteView(ReadView):
    """A read-write, contiguous, typed window over a buffer attribute.

    Do not construct views directly. Use :func:`acquire_mut` instead.
    """

    mutable = True

    @overload
    def __setitem__(self, index: int, value: Any, /) -> None:
        ...

    @overload
    def __setitem__(self, index: slice, value: Iterable[Any], /) -> None:
        ...

    def __setitem__(self, index: Union[int, slice], value: Any, /) -> None:
        if not isinstance(index, slice):
            self.memory[index] = value
            return
        values = list(value)
        if len(values) != len(range(*index.indices(len(self)))):
            raise ValueError('slice assignment cannot change the length of a view')
        self.memory[index] = self._stage(values)

    def _stage(self, values: list[Any], /) -> memoryview:
        """Convert values into a scratch buffer so that a bad item writes nothing."""
        staged = memoryview(np.empty(len(values), dtype=self.dtype))
        if staged.format != self.memory.format:
            staged = staged.cast('B').cast(self.memory.format)
        for i, item in enumerate(values):
            staged[i] = item
        return staged

    def fill(self, value: Any, /) -> None:
        """Set every element to the same value."""
        self[:] = [value] * len(self)


def acquire(
    store: AttributeStore,
    name: str,
    element_type: ElementType,
    /,
    *,
    timeout: Optional[float] = None,
) -> ReadView:
    """Acquire a read-only view of a buffer attribute. See :meth:`ReadView.open`."""
    return ReadView.open(store, name, element_type, timeout=timeout)


def acquire_mut(
    store: AttributeStore,
    name: str,
    element_type: ElementType,
    /,
    *,
    timeout: Optional[float] = None,
) -> WriteView:
    """Acquire a read-write view of a buffer attribute. See :meth:`ReadView.open`."""
    return WriteView.open(store, name, element_type, timeout=timeout)
