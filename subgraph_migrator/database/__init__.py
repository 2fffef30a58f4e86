# subgraph_migrator/database/__init__.py
