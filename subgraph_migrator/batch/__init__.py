# subgraph_migrator/batch/__init__.py

from .cancellation import CancellationToken
from .hashes import load_hash_list
from .results import ResultLedger
from .scheduler import BatchScheduler
