"""Command-line interface and configuration."""

import collections
import functools
from pathlib import Path
from typing import Any, Callable, Iterator, NamedTuple, Optional, TypeVar, Union

import click
import numpy as np
import orjson as json
import yaml

import writeonce

from . import log
from .exception import WriteOnceBaseException
from .interpreter import Interpreter
from .store import AttributeStore
from .value import is_viewable, resolve_dtype
from .view import ReadView, acquire

__all__ = [
    'DEMO_SOURCE',
    'cli',
    'load_attributes',
    'load_yaml',
    'make_attribute',
]

DEMO_SOURCE = """\
import numpy as np
write_once.add('list', np.absolute(np.array([-1, -2, -3], dtype='int32')))
print('python:', write_once.get('list'))
"""


class OptionGroupCommand(click.Command):
    @staticmethod
    def format_group(
        ctx: click.Context,
        formatter: click.HelpFormatter,
        header: str,
        params: list[click.Parameter],
    ) -> None:
        with formatter.section(header):
            options = []
            for param in params:
                record = param.get_help_record(ctx)
                if record is not None:
                    options.append(record)
            formatter.write_dl(options, col_max=30)

    def format_options(
        self,
        ctx: click.Context,
        formatter: click.HelpFormatter,
    ) -> None:
        grouped_params: dict['OptionGroup', list[click.Parameter]]
        grouped_params = collections.defaultdict(list)
        other_params: list[click.Parameter] = []
        for param in self.get_params(ctx):
            group = getattr(param, 'group', None)
            params = grouped_params[group] if group else other_params
            params.append(param)
        for group in sorted(grouped_params, key=lambda group: group.key):
            params = grouped_params[group]
            header = group.header or f'{group.key.title()} Options'
            self.format_group(ctx, formatter, header, params)
        self.format_group(ctx, formatter, 'Other Options', other_params)


class OptionGroupMultiCommand(OptionGroupCommand, click.Group):
    def format_options(
        self,
        ctx: click.Context,
        formatter: click.HelpFormatter,
    ) -> None:
        super().format_options(ctx, formatter)
        self.format_commands(ctx, formatter)


class OptionGroup(NamedTuple):
    key: str
    header: Optional[str] = None


class Option(click.Option):
    def __init__(
        self,
        *args: Any,
        group: Optional[OptionGroup] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.group = group


FC = TypeVar('FC', Callable[..., Any], click.Command)
ParameterCallback = Callable[[click.Context, click.Parameter, Any], Any]


class OptionGroupFactory:
    def __init__(self) -> None:
        self.current: Optional[OptionGroup] = None

    def group(self, *args: Any, **kwargs: Any) -> Callable[[FC], FC]:
        self.current = OptionGroup(*args, **kwargs)
        return lambda func: func

    def option(self, *args: Any, **kwargs: Any) -> Callable[[FC], FC]:
        return click.option(*args, **kwargs, cls=Option, group=self.current)


@functools.lru_cache(maxsize=64)
def make_converter(convert: Callable[[Any], Any]) -> ParameterCallback:
    """Make a :mod:`click` callback that applies a conversion to each option value.

    Works with options provided multiple times (where ``multiple=True``). Missing values
    (``None``) are passed through unconverted.

    Arguments:
        convert: A unary conversion callable. The argument/return types are arbitrary
            and need not be the same.

    Returns:
        A :mod:`click`-compatible callback.
    """

    def callback(_ctx: click.Context, _param: click.Parameter, value: Any, /) -> Any:
        if value is None:
            return None
        try:
            if isinstance(value, (tuple, list)):
                return tuple(convert(element) for element in value)
            return convert(value)
        except Exception as exc:
            raise click.BadParameter(str(exc)) from exc

    return callback


def make_multipart_parser(
    *converters: Callable[[str], Any],
    delimeter: str = ':',
) -> ParameterCallback:
    """Make a :mod:`click` callback that parses a tuple-like multipart option.

    Examples:
        >>> make_multipart_parser()
        Traceback (most recent call last):
          ...
        ValueError: not enough converters
        >>> convert = make_multipart_parser(str, resolve_dtype)
        >>> convert(None, None, 'list')
        Traceback (most recent call last):
          ...
        click.exceptions.BadParameter: not enough or too many parts provided
        >>> convert(None, None, 'list:int32')
        ('list', dtype('int32'))
    """
    if not converters:
        raise ValueError('not enough converters')

    def convert(element: str) -> Iterator[Any]:
        components = element.split(delimeter, maxsplit=len(converters) - 1)
        if len(components) != len(converters):
            raise click.BadParameter('not enough or too many parts provided')
        for i, (converter, component) in enumerate(zip(converters, components)):
            try:
                yield converter(component)
            except Exception as exc:
                raise click.BadParameter(f'failed to parse part {i+1}: {exc}') from exc

    return make_converter(lambda value: tuple(convert(value)))


def check_positive(value: float) -> float:
    """Check whether the provided value is strictly positive.

    Examples:
        >>> check_positive(0.01)
        0.01
        >>> check_positive(0)
        Traceback (most recent call last):
          ...
        ValueError: '0' should be a positive number
    """
    if value <= 0:
        raise ValueError(f"'{value}' should be a positive number")
    return value


def load_yaml(path: Union[str, Path]) -> Any:
    """Read and parse a YAML file.

    Arguments:
        path: A path to a valid regular text file.

    Examples:
        >>> import tempfile
        >>> with tempfile.NamedTemporaryFile(mode='w') as tmp:
        ...     print('x: {y: 1}', file=tmp)
        ...     _ = tmp.seek(0)
        ...     load_yaml(tmp.name)
        {'x': {'y': 1}}
        >>> with tempfile.NamedTemporaryFile(mode='w') as tmp:
        ...     print(':', file=tmp)
        ...     _ = tmp.seek(0)
        ...     load_yaml(tmp.name)
        Traceback (most recent call last):
          ...
        ValueError: Unable to parse YAML (...): line 1, column 1
    """
    try:
        with Path(path).open() as stream:
            return yaml.load(stream, Loader=yaml.SafeLoader)
    except yaml.YAMLError as exc:
        message = f'Unable to parse YAML ({path})'
        mark = getattr(exc, 'problem_mark', None)
        if mark:  # pragma: no cover
            # The PyYAML docs recommend this pattern:
            # https://pyyaml.org/wiki/PyYAMLDocumentation
            message += f': line {mark.line + 1}, column {mark.column + 1}'
        raise ValueError(message) from exc


def make_attribute(value: Any) -> Any:
    """Convert a preloaded attribute from its YAML form.

    A mapping with exactly the keys ``dtype`` and ``values`` becomes a numpy array.
    Anything else is stored as-is.

    Examples:
        >>> make_attribute({'dtype': 'int32', 'values': [-1, -2, -3]})
        array([-1, -2, -3], dtype=int32)
        >>> make_attribute({'dtype': 'int32'})
        {'dtype': 'int32'}
        >>> make_attribute(5)
        5
    """
    if isinstance(value, dict) and set(value) == {'dtype', 'values'}:
        return np.array(value['values'], dtype=resolve_dtype(value['dtype']))
    return value


def load_attributes(path: Union[str, Path]) -> dict[str, Any]:
    """Read a YAML mapping of attributes to preload.

    Raises:
        ValueError: If the file does not hold a mapping, or if an array attribute has an
            invalid element type.
    """
    attrs = load_yaml(path)
    if attrs is None:
        return {}
    if not isinstance(attrs, dict):
        raise ValueError(f'attributes must be a mapping, not {type(attrs).__name__}')
    return {str(name): make_attribute(value) for name, value in attrs.items()}


def parse_element_type(element_type: str) -> np.dtype:
    """Resolve an element type that views can use.

    Examples:
        >>> parse_element_type('int32')
        dtype('int32')
        >>> parse_element_type('complex128')
        Traceback (most recent call last):
          ...
        ValueError: element type cannot be viewed: 'complex128'
    """
    dtype = resolve_dtype(element_type)
    if not is_viewable(dtype):
        raise ValueError(f'element type cannot be viewed: {element_type!r}')
    return dtype


def _echo_view(view: ReadView, output_format: str) -> None:
    if output_format == 'json':
        record = {'name': view.name, 'dtype': str(view.dtype), 'values': view.tolist()}
        click.echo(json.dumps(record).decode())
    else:
        click.echo(f'{view.name}: {view.tolist()}')


optgroup = OptionGroupFactory()


@click.group(
    context_settings=dict(
        auto_envvar_prefix='WO',
        max_content_width=100,
        show_default=True,
    ),
    cls=OptionGroupMultiCommand,
)
@optgroup.group('log')
@optgroup.option(
    '--log-level',
    type=click.Choice(log.LEVELS, case_sensitive=False),
    default='info',
    help='Minimum severity of log records displayed.',
)
@optgroup.option(
    '--log-format',
    type=click.Choice(['json', 'pretty'], case_sensitive=False),
    default='pretty',
    help='Format of records printed to standard output.',
)
@click.version_option(version=writeonce.__version__, message='%(version)s')
def cli(**options: Any) -> None:
    """Share write-once attributes between host code and Python scripts.

    Scripts see the store under a global name (``write_once``, by default) and may write
    each attribute once. Afterwards, the host reads buffer attributes through typed,
    zero-copy views.
    """
    log.configure(fmt=options['log_format'], level=options['log_level'])


@cli.command()
@click.argument('script', type=click.Path(dir_okay=False, exists=True))
@click.option(
    '--attrs',
    type=click.Path(dir_okay=False, exists=True),
    callback=make_converter(load_attributes),
    help='YAML mapping of attributes to write before the script runs.',
)
@click.option(
    '--view',
    'views',
    callback=make_multipart_parser(str, parse_element_type),
    metavar='NAME:TYPE',
    multiple=True,
    help='Print an attribute through a typed view after the script runs.',
)
@click.option(
    '--timeout',
    type=float,
    callback=make_converter(check_positive),
    help='Maximum number of seconds the script may run for.',
)
@click.option(
    '--binding',
    default='write_once',
    help='Global name under which the script sees the store.',
)
@click.option(
    '--output-format',
    type=click.Choice(['json', 'pretty'], case_sensitive=False),
    default='pretty',
    help='Format of views printed to standard output.',
)
@click.pass_context
def run(ctx: click.Context, **options: Any) -> None:
    """Run a script, then print typed views of its attributes.

    Preloaded attributes are plain YAML values, except that a mapping with the keys
    "dtype" and "values" becomes a numeric array:

    \b
        $ cat attrs.yaml
        list: {dtype: int32, values: [-1, -2, -3]}
        $ python -m writeonce run --attrs attrs.yaml --view list:int32 script.py

    Element types use ctypes names without the "c_" prefix (int32, uint8, float,
    double, bool, ...). The command exits with status 1 if writing, viewing, or running
    the script fails.
    """
    logger = log.get_logger()
    store = AttributeStore()
    interpreter = Interpreter(store, options['binding'])
    try:
        for name, value in (options['attrs'] or {}).items():
            store.add(name, value)
        interpreter.run_file(options['script'], timeout=options['timeout'])
        for name, dtype in options['views']:
            with acquire(store, name, dtype) as view:
                _echo_view(view, options['output_format'])
    except WriteOnceBaseException as exc:
        logger.error('Command failed', exc_info=exc)
        ctx.exit(1)


@cli.command()
def demo() -> None:
    """Run the built-in demonstration.

    A script stores the absolute values of an int32 array under "list". The host then
    reads the array back through an int32 view:

    \b
        $ python -m writeonce demo
        host: [1, 2, 3]
    """
    store = AttributeStore()
    Interpreter(store).run(DEMO_SOURCE, filename='<demo>')
    with acquire(store, 'list', 'int32') as view:
        click.echo(f'host: {view.tolist()}')
