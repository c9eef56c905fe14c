# search/stats.py
from collections import Counter


class SearchStats:
    """In-process counters for the query path (cache, breaker, fallbacks)."""

    def __init__(self):
        self._counts = Counter()

    def record(self, name, amount=1):
        self._counts[name] += amount

    def get(self, name):
        return self._counts[name]

    def snapshot(self):
        return dict(self._counts)

    def reset(self):
        self._counts.clear()
