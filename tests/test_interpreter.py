import errno
import signal
import threading

import numpy as np
import pytest

from writeonce.cli import DEMO_SOURCE
from writeonce.exception import DuplicateWriteError, NotFoundError
from writeonce.interpreter import ExecutionError, Interpreter, using_timer
from writeonce.store import AttributeStore
from writeonce.sync import SyncError
from writeonce.view import acquire


@pytest.fixture
def store():
    yield AttributeStore()


@pytest.fixture
def interpreter(mocker, store):
    interpreter = Interpreter(store)
    mocker.patch.object(interpreter, 'logger')
    yield interpreter


def _run_in_thread(func):
    errors = []

    def target():
        try:
            func()
        except (ExecutionError, SyncError) as exc:
            errors.append(exc)

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    thread.join()
    return errors


def test_demo(interpreter, store):
    interpreter.run(DEMO_SOURCE, filename='<demo>')
    with acquire(store, 'list', 'int32') as numbers:
        assert numbers.tolist() == [1, 2, 3]
    interpreter.logger.info.assert_any_call('python: [1 2 3]', script_print=True)
    interpreter.logger.info.assert_any_call('Script started', filename='<demo>', timeout=None)
    interpreter.logger.info.assert_called_with('Script finished', filename='<demo>')


def test_script_globals(interpreter):
    script_globals = interpreter.run('x = 1 + 1\nname = __name__')
    assert script_globals['x'] == 2
    assert script_globals['name'] == '__script__'
    assert script_globals['write_once'] is interpreter.store


def test_print_separator(interpreter):
    interpreter.run("print('a', 'b', sep='-', flush=True)")
    interpreter.logger.info.assert_any_call('a-b', script_print=True)


def test_duplicate_write(interpreter, store):
    with pytest.raises(ExecutionError) as excinfo:
        interpreter.run("write_once.add('x', 1)\nwrite_once.add('x', 2)")
    assert isinstance(excinfo.value.__cause__, DuplicateWriteError)
    assert excinfo.value.context['filename'] == '<script>'
    interpreter.logger.error.assert_called_once_with('Script failed', exc_info=excinfo.value)
    assert store.get('x') == 1
    assert not store.mutex.held


def test_host_write_visible(interpreter, store):
    store.add('list', np.array([-1, -2, -3], dtype='int32'))
    script_globals = interpreter.run("total = int(write_once.get('list').sum())")
    assert script_globals['total'] == -6


def test_missing_attribute(interpreter):
    with pytest.raises(ExecutionError) as excinfo:
        interpreter.run("write_once.get('missing')")
    assert isinstance(excinfo.value.__cause__, NotFoundError)


def test_syntax_error(interpreter):
    with pytest.raises(ExecutionError) as excinfo:
        interpreter.run('def broken(:', filename='broken.py')
    assert isinstance(excinfo.value.__cause__, SyntaxError)
    assert excinfo.value.context['filename'] == 'broken.py'


def test_timeout(interpreter, store):
    handler = signal.getsignal(signal.SIGALRM)
    with pytest.raises(ExecutionError) as excinfo:
        interpreter.run('while True:\n    pass', timeout=0.1)
    assert isinstance(excinfo.value.__cause__, TimeoutError)
    assert excinfo.value.context['timeout'] == pytest.approx(0.1)
    assert signal.getsignal(signal.SIGALRM) is handler
    assert not store.mutex.held


def test_timer_not_triggered():
    with using_timer(1, filename='fast.py'):
        pass
    with using_timer(None):
        pass


def test_timer_not_main_thread(interpreter, store):
    errors = _run_in_thread(lambda: interpreter.run('x = 1', timeout=1))
    assert len(errors) == 1
    assert isinstance(errors[0], ExecutionError)
    assert 'current_thread' in errors[0].context
    assert not store.mutex.held
    assert _run_in_thread(lambda: interpreter.run('x = 1')) == []


def test_script_holds_critical_section(interpreter):
    def probe():
        return [exc.context['errno'] for exc in _run_in_thread(try_transaction)]

    def try_transaction():
        with interpreter.store.transaction(timeout=0):
            pass

    interpreter.bind('probe', probe)
    script_globals = interpreter.run('result = probe()')
    assert script_globals['result'] == [errno.EBUSY]


def test_bind(interpreter):
    interpreter.bind('answer', 42)
    assert interpreter.run('x = answer')['x'] == 42
    interpreter.logger.warn.assert_not_called()
    interpreter.bind('answer', 43)
    interpreter.logger.warn.assert_called_once_with('Replacing script binding', name='answer')
    assert interpreter.run('x = answer')['x'] == 43
    with pytest.raises(ValueError):
        interpreter.bind('write_once', None)


def test_custom_binding(mocker, store):
    interpreter = Interpreter(store, 'attrs')
    mocker.patch.object(interpreter, 'logger')
    interpreter.run("attrs.add('x', 5)")
    assert store.get('x') == 5
    with pytest.raises(ExecutionError) as excinfo:
        interpreter.run("write_once.add('y', 5)")
    assert isinstance(excinfo.value.__cause__, NameError)


def test_run_file(interpreter, store, tmp_path):
    path = tmp_path / 'script.py'
    path.write_text(DEMO_SOURCE)
    interpreter.run_file(path)
    assert store.get('list').tolist() == [1, 2, 3]
    interpreter.logger.info.assert_any_call('Script started', filename=str(path), timeout=None)


def test_run_module(interpreter, store, mocker):
    module = interpreter.run_module('testcode.producer')
    assert module.loads == 1
    assert module.write_once is store
    assert store.get('list').tolist() == [1, 2, 3]
    interpreter.logger.info.assert_any_call('Module loaded', module='testcode.producer')
    interpreter.logger.info.assert_any_call('loaded [1 2 3]', script_print=True)

    fresh_store = AttributeStore()
    fresh = Interpreter(fresh_store)
    mocker.patch.object(fresh, 'logger')
    module = fresh.run_module('testcode.producer')
    assert module.loads == 1
    assert module.write_once is fresh_store
    assert fresh_store.get('list').tolist() == [1, 2, 3]


def test_run_module_entry_points(interpreter, store):
    module = interpreter.run_module('testcode.producer', entry_point='missing')
    assert module.loads == 0
    assert 'list' not in store
    with pytest.raises(ExecutionError) as excinfo:
        interpreter.run_module('testcode.producer', entry_point='fail')
    assert isinstance(excinfo.value.__cause__, DuplicateWriteError)
    assert excinfo.value.context['module'] == 'testcode.producer'
    interpreter.logger.error.assert_called_once_with('Module failed', exc_info=excinfo.value)


def test_run_module_not_found(interpreter):
    with pytest.raises(ExecutionError) as excinfo:
        interpreter.run_module('testcode.doesnotexist')
    assert isinstance(excinfo.value.__cause__, ModuleNotFoundError)
