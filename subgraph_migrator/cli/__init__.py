# subgraph_migrator/cli/__init__.py
