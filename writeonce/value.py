"""Classification of opaque attribute values.

The store never interprets the values it holds. When a typed view is requested, the
value is inspected through the buffer protocol, which numpy arrays, :class:`bytearray`,
:mod:`array` arrays, and :mod:`ctypes` arrays all implement. The result is a
:class:`ValueInfo` describing the value's kind, element type, and memory layout.
"""

import ctypes
import enum
import math
import numbers
from typing import Any, NamedTuple, Optional, Union

import numpy as np

__all__ = [
    'CAST_FORMATS',
    'ElementType',
    'Kind',
    'ValueInfo',
    'classify',
    'is_viewable',
    'resolve_dtype',
]

# Formats :meth:`memoryview.cast` accepts that are also numeric.
CAST_FORMATS: frozenset[str] = frozenset('?bBhHiIlLqQnNfd')

ElementType = Union[str, type, np.dtype]


@enum.unique
class Kind(enum.Enum):
    """The coarse kind of an opaque value.

    Attributes:
        SCALAR: A number, including numpy scalars and zero-dimensional buffers.
        BUFFER: An object exporting the buffer protocol with at least one dimension.
        OTHER: Anything else.
    """

    SCALAR = 'scalar'
    BUFFER = 'buffer'
    OTHER = 'other'


class ValueInfo(NamedTuple):
    """A description of an opaque value.

    Parameters:
        kind: The value's kind.
        dtype: The element type, if the value exports a buffer with a recognizable
            format.
        shape: The buffer's logical shape.
        contiguous: Whether the buffer is a single dense, row-major run of memory.
        readonly: Whether the buffer forbids writes.
    """

    kind: Kind
    dtype: Optional[np.dtype] = None
    shape: tuple[int, ...] = ()
    contiguous: bool = False
    readonly: bool = True

    @property
    def length(self, /) -> int:
        """The number of elements a flat view of this value would have."""
        return math.prod(self.shape) if self.kind is Kind.BUFFER else 0


def _format_dtype(memory: memoryview, /) -> Optional[np.dtype]:
    try:
        return np.dtype(memory.format)
    except (TypeError, ValueError):
        pass
    # Formats like 'Zd' (complex) are only understood by numpy's buffer parser.
    try:
        return np.asarray(memory).dtype
    except (TypeError, ValueError):
        return None


def classify(value: Any, /) -> ValueInfo:
    """Inspect an opaque value.

    Examples:
        >>> classify(5).kind
        <Kind.SCALAR: 'scalar'>
        >>> classify('five').kind
        <Kind.OTHER: 'other'>
        >>> info = classify(np.zeros((2, 3), dtype=np.int32))
        >>> info.kind, info.dtype, info.length, info.contiguous, info.readonly
        (<Kind.BUFFER: 'buffer'>, dtype('int32'), 6, True, False)
        >>> classify(np.arange(6)[::2]).contiguous
        False
        >>> classify(np.zeros(2, dtype=np.complex128)).dtype
        dtype('complex128')
    """
    try:
        memory = memoryview(value)
    except (TypeError, ValueError):
        kind = Kind.SCALAR if isinstance(value, numbers.Number) else Kind.OTHER
        return ValueInfo(kind)
    with memory:
        dtype = _format_dtype(memory)
        if memory.ndim == 0:
            return ValueInfo(Kind.SCALAR, dtype, (), True, memory.readonly)
        return ValueInfo(
            Kind.BUFFER,
            dtype,
            tuple(memory.shape or ()),
            memory.c_contiguous,
            memory.readonly,
        )


def resolve_dtype(element_type: ElementType, /) -> np.dtype:
    """Resolve an element type specifier into a numeric dtype.

    Parameters:
        element_type: A :mod:`ctypes` type, the name of a simple :mod:`ctypes` type
            without the ``c_`` prefix, or anything :class:`numpy.dtype` accepts. Names
            follow :mod:`ctypes`, so ``'float'`` is single precision.

    Raises:
        ValueError: If the type is unrecognized or not numeric.

    Examples:
        >>> resolve_dtype(ctypes.c_int32)
        dtype('int32')
        >>> resolve_dtype('float')
        dtype('float32')
        >>> resolve_dtype('complex128')
        dtype('complex128')
        >>> resolve_dtype('uint8[4]')
        Traceback (most recent call last):
          ...
        ValueError: unrecognized element type: 'uint8[4]'
        >>> resolve_dtype('char')
        Traceback (most recent call last):
          ...
        ValueError: element type is not numeric: 'char'
    """
    resolved: Any = element_type
    if isinstance(element_type, str):
        resolved = getattr(ctypes, f'c_{element_type}', element_type)
    try:
        dtype = np.dtype(resolved)
    except (TypeError, ValueError) as exc:
        raise ValueError(f'unrecognized element type: {element_type!r}') from exc
    if dtype.kind not in 'biufc' or dtype.shape:
        raise ValueError(f'element type is not numeric: {element_type!r}')
    return dtype


def is_viewable(dtype: np.dtype, /) -> bool:
    """Whether :class:`memoryview` can index elements of this type directly.

    Examples:
        >>> is_viewable(np.dtype('int32'))
        True
        >>> is_viewable(np.dtype('complex128')), is_viewable(np.dtype('>i4'))
        (False, False)
    """
    return dtype.char in CAST_FORMATS and dtype.isnative
