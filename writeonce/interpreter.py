"""Script execution against a shared store.

The interpreter is the dynamic side of the store. Scripts run with the store bound
into their global namespace (as ``write_once``, by default) and may call
:meth:`writeonce.store.AttributeStore.add` and
:meth:`writeonce.store.AttributeStore.get` on it::

    import numpy as np
    write_once.add('list', np.absolute(np.array([-1, -2, -3], dtype='int32')))
    print('python:', write_once.get('list'))

A script holds the store's critical section for its entire execution, so host code
in other threads cannot observe a partially run script. Calls to ``print`` are
turned into log events.
"""

import builtins
import contextlib
import importlib
import signal
import sys
import threading
import types
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, NoReturn, Optional, Union

import structlog

from . import log
from .exception import WriteOnceBaseException
from .store import AttributeStore

__all__ = ['ExecutionError', 'Interpreter', 'using_timer']


class ExecutionError(WriteOnceBaseException):
    """General execution error."""


def _handle_timeout(_signum: int, _stack_frame: Optional[types.FrameType]) -> NoReturn:
    """Signal handler that raises a :class:`TimeoutError`."""
    raise TimeoutError('script timed out')


@contextlib.contextmanager
def using_timer(timeout: Optional[float], **context: Any) -> Iterator[None]:
    """Context manager to set, then clear, a timer that interrupts the body.

    Parameters:
        timeout: Seconds before a :class:`TimeoutError` is raised in the body. ``None``
            disables the timer.
        context: Extra context attached to any :class:`ExecutionError`.

    Raises:
        ExecutionError: If the body raised an exception (including the timeout), or if
            a timer was requested outside the main thread, which is the only thread that
            runs signal handlers.
    """
    if timeout is not None:
        if threading.current_thread() is not threading.main_thread():
            raise ExecutionError(
                'timeouts may only be used in the main thread',
                timeout=timeout,
                current_thread=threading.current_thread().ident,
                **context,
            )
        previous_handler = signal.signal(signal.SIGALRM, _handle_timeout)
        signal.setitimer(signal.ITIMER_REAL, timeout)
    try:
        yield
    except Exception as exc:
        raise ExecutionError(
            'script raised an exception',
            timeout=timeout,
            **context,
        ) from exc
    finally:
        if timeout is not None:
            signal.setitimer(signal.ITIMER_REAL, 0)
            signal.signal(signal.SIGALRM, previous_handler)


@dataclass
class Interpreter:
    """Runs scripts and modules with a store bound into their namespace.

    Parameters:
        store: The store shared with host code.
        binding: The global name under which scripts see the store.
        namespace: Extra globals exposed to scripts.
    """

    store: AttributeStore
    binding: str = 'write_once'
    namespace: dict[str, Any] = field(default_factory=dict)
    logger: log.Logger = field(default_factory=structlog.get_logger, repr=False)

    def bind(self, name: str, value: Any, /) -> None:
        """Expose an extra global to scripts.

        Raises:
            ValueError: If the name is the store's binding.
        """
        if name == self.binding:
            raise ValueError(f'{name!r} is reserved for the store')
        if name in self.namespace:
            self.logger.warn('Replacing script binding', name=name)
        self.namespace[name] = value

    def _print(self, /, *values: Any, sep: str = ' ', **_kwargs: Any) -> None:
        self.logger.info(sep.join(map(str, values)), script_print=True)

    def make_globals(self, /, name: str = '__script__') -> dict[str, Any]:
        """Build a fresh global namespace for one script run."""
        return {
            '__name__': name,
            '__builtins__': builtins,
            'print': self._print,
            **self.namespace,
            self.binding: self.store,
        }

    def run(
        self,
        source: str,
        /,
        *,
        filename: str = '<script>',
        timeout: Optional[float] = None,
    ) -> dict[str, Any]:
        """Compile and execute script source.

        Parameters:
            source: Python source code.
            filename: The name shown in tracebacks.
            timeout: Maximum number of seconds the script may run for.

        Returns:
            The script's global namespace after execution.

        Raises:
            ExecutionError: If the script could not be compiled, raised an exception, or
                timed out. The original exception is chained as the cause.
        """
        script_globals = self.make_globals()
        self.logger.info('Script started', filename=filename, timeout=timeout)
        try:
            with self.store.transaction():
                with using_timer(timeout, filename=filename):
                    exec(compile(source, filename, 'exec'), script_globals)
        except ExecutionError as exc:
            self.logger.error('Script failed', exc_info=exc)
            raise
        self.logger.info('Script finished', filename=filename)
        return script_globals

    def run_file(
        self,
        path: Union[str, Path],
        /,
        *,
        timeout: Optional[float] = None,
    ) -> dict[str, Any]:
        """Execute a script file. See :meth:`run`."""
        source = Path(path).read_text()
        return self.run(source, filename=str(path), timeout=timeout)

    def run_module(
        self,
        module_name: str,
        /,
        *,
        entry_point: str = 'main',
        timeout: Optional[float] = None,
    ) -> types.ModuleType:
        """Import (or reload) a module, bind the store into it, and call its entry point.

        The store is only bound after the module body runs, so modules should touch it
        from the entry point rather than at import time. A module without the entry
        point is only loaded.

        Returns:
            The loaded module.

        Raises:
            ExecutionError: If the module could not be imported or its entry point raised
                an exception.
        """
        try:
            with self.store.transaction():
                with using_timer(timeout, module=module_name):
                    module = sys.modules.get(module_name)
                    if module is None:
                        module = importlib.import_module(module_name)
                    else:
                        module = importlib.reload(module)
                    for name, value in self.make_globals(module_name).items():
                        if not name.startswith('__'):
                            setattr(module, name, value)
                    self.logger.info('Module loaded', module=module_name)
                    func = getattr(module, entry_point, None)
                    if callable(func):
                        func()
        except ExecutionError as exc:
            self.logger.error('Module failed', exc_info=exc)
            raise
        return module
