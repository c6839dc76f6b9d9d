"""Per-session memoization of parsed ODB++ files.

A job re-reads the same stephdr and features files once per repeated
cell; the cache makes sure each absolute path is parsed once. Failed
parses are remembered too and raise the same error on every lookup.
"""

import logging
import threading
from pathlib import Path

from .errors import ParseFailure
from .features_parser import FeaturesParser
from .structured_text import StructuredTextParser

log = logging.getLogger(__name__)


class ParseCache:
    def __init__(self, structured_text_parser=StructuredTextParser,
                 features_parser=FeaturesParser):
        self._structured_text_parser = structured_text_parser
        self._features_parser = features_parser
        self._entries = {}  # (kind, absolute path) -> store or ParseFailure
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self):
        return len(self._entries)

    def structured_text(self, path):
        """Parsed StructuredTextDataStore for path."""
        return self._get("structured_text", path, self._structured_text_parser)

    def features(self, path):
        """Parsed FeaturesDataStore for path."""
        return self._get("features", path, self._features_parser)

    def _get(self, kind, path, parser_type):
        key = (kind, Path(path).resolve())
        with self._lock:
            if key in self._entries:
                self.hits += 1
                entry = self._entries[key]
            else:
                self.misses += 1
                log.debug("Cache miss: %s %s", kind, key[1])
                try:
                    entry = parser_type().parse(key[1])
                except ParseFailure as e:
                    self._entries[key] = e
                    raise
                self._entries[key] = entry

        if isinstance(entry, ParseFailure):
            # Start a fresh traceback so lookups do not pile up frames
            raise entry.with_traceback(None)
        return entry

    def clear(self):
        with self._lock:
            self._entries.clear()
