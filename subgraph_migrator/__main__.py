# subgraph_migrator/__main__.py

from .cli.__main__ import cli


if __name__ == '__main__':
    cli()
