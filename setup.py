from setuptools import setup

description = 'Write-once attribute store with typed buffer views'

setup(
    name='writeonce',
    version='0.1.0',
    description=description,
    long_description=description,
    author='writeonce developers',
    python_requires='>=3.9',
    packages=['writeonce'],
    install_requires=[
        'click>=8,<9',
        'colorama<1',
        'numpy>=1.22',
        'orjson>=3,<4',
        'structlog>=21',
        'PyYAML>=5',
    ],
    extras_require={
        'test': [
            'pylint>=2',
            'pytest>=7',
            'pytest-mock>=3',
        ],
    },
    entry_points={
        'console_scripts': ['writeonce=writeonce.cli:cli'],
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Natural Language :: English',
        'Programming Language :: Python :: 3.9',
    ],
    package_data={
        'writeonce': ['py.typed'],
    },
)
