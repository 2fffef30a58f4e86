# subgraph_migrator/core/__init__.py
