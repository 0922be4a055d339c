from . import orgstats
from . import sync

__all__ = [
    "orgstats",
    "sync",
]
