import orjson as json
import pytest
from click.testing import CliRunner

from writeonce.cli import cli

SCRIPT = """\
import numpy as np
write_once.add('abs', np.absolute(write_once.get('list')))
"""


@pytest.fixture(autouse=True)
def configure(mocker):
    yield mocker.patch('writeonce.log.configure')


@pytest.fixture
def runner():
    yield CliRunner()


@pytest.fixture
def script(tmp_path):
    path = tmp_path / 'script.py'
    path.write_text(SCRIPT)
    yield path


@pytest.fixture
def attrs(tmp_path):
    path = tmp_path / 'attrs.yaml'
    path.write_text('list: {dtype: int32, values: [-1, -2, -3]}\nname: left-motor\n')
    yield path


def test_demo(runner, configure):
    result = runner.invoke(cli, ['demo'])
    assert result.exit_code == 0
    assert 'host: [1, 2, 3]' in result.output.splitlines()
    configure.assert_called_once_with(fmt='pretty', level='info')


def test_log_options(runner, configure):
    result = runner.invoke(cli, ['--log-level', 'debug', '--log-format', 'json', 'demo'])
    assert result.exit_code == 0
    configure.assert_called_once_with(fmt='json', level='debug')


def test_log_options_env(runner, configure):
    result = runner.invoke(cli, ['demo'], env={'WO_LOG_LEVEL': 'error'})
    assert result.exit_code == 0
    configure.assert_called_once_with(fmt='pretty', level='error')


def test_run(runner, script, attrs):
    result = runner.invoke(
        cli,
        ['run', '--attrs', str(attrs), '--view', 'abs:int32', '--view', 'list:int', str(script)],
    )
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert 'abs: [1, 2, 3]' in lines
    assert 'list: [-1, -2, -3]' in lines


def test_run_json(runner, script, attrs):
    result = runner.invoke(
        cli,
        ['run', '--attrs', str(attrs), '--view', 'abs:int32', '--output-format', 'json', str(script)],
    )
    assert result.exit_code == 0
    records = [
        json.loads(line) for line in result.output.splitlines() if line.startswith('{"name"')
    ]
    assert records == [{'name': 'abs', 'dtype': 'int32', 'values': [1, 2, 3]}]


def test_run_custom_binding(runner, tmp_path):
    path = tmp_path / 'script.py'
    path.write_text("attrs.add('raw', bytearray(b'abc'))\n")
    result = runner.invoke(cli, ['run', '--binding', 'attrs', '--view', 'raw:uint8', str(path)])
    assert result.exit_code == 0
    assert 'raw: [97, 98, 99]' in result.output.splitlines()


@pytest.mark.parametrize(
    'view',
    [
        'missing:int32',
        'abs:int64',
        'name:int32',
    ],
)
def test_run_view_fails(runner, script, attrs, view):
    result = runner.invoke(cli, ['run', '--attrs', str(attrs), '--view', view, str(script)])
    assert result.exit_code == 1


def test_run_script_fails(runner, script):
    result = runner.invoke(cli, ['run', str(script)])
    assert result.exit_code == 1


def test_run_duplicate_preload(runner, tmp_path, attrs):
    path = tmp_path / 'script.py'
    path.write_text("write_once.add('name', 'right-motor')\n")
    result = runner.invoke(cli, ['run', '--attrs', str(attrs), str(path)])
    assert result.exit_code == 1


@pytest.mark.parametrize(
    'args',
    [
        ['--view', 'abs:nonsense'],
        ['--view', 'abs'],
        ['--view', 'abs:complex128'],
        ['--timeout', '0'],
        ['--timeout=-1'],
    ],
)
def test_run_bad_options(runner, script, args):
    result = runner.invoke(cli, ['run', *args, str(script)])
    assert result.exit_code == 2


def test_run_missing_script(runner, tmp_path):
    result = runner.invoke(cli, ['run', str(tmp_path / 'missing.py')])
    assert result.exit_code == 2


def test_version(runner):
    result = runner.invoke(cli, ['--version'])
    assert result.exit_code == 0
    assert result.output.strip() == '0.1.0'


def test_help(runner):
    result = runner.invoke(cli, ['--help'])
    assert result.exit_code == 0
    assert 'Log Options' in result.output
    assert 'Other Options' in result.output


@pytest.mark.parametrize(
    'contents',
    [
        '- list\n- name\n',
        'list: {dtype: nonsense, values: [1]}\n',
        'list: {dtype: int32, values: [a]}\n',
    ],
)
def test_run_bad_attrs(runner, script, tmp_path, contents):
    path = tmp_path / 'attrs.yaml'
    path.write_text(contents)
    result = runner.invoke(cli, ['run', '--attrs', str(path), str(script)])
    assert result.exit_code == 2
    assert 'Invalid value' in result.output


def test_run_empty_attrs(runner, tmp_path):
    attrs, script = tmp_path / 'attrs.yaml', tmp_path / 'script.py'
    attrs.write_text('')
    script.write_text("write_once.add('x', 1)\n")
    result = runner.invoke(cli, ['run', '--attrs', str(attrs), str(script)])
    assert result.exit_code == 0
