from .cli import cli

if __name__ == '__main__':
    cli(prog_name=f'python -m {__package__}')  # pylint: disable=no-value-for-parameter
