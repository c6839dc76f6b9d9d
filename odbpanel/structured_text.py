"""ODB++ structured text parser.

Structured text is the block/key format used by matrix/matrix, stephdr,
misc/info and friends:

    UNITS=INCH
    X_DATUM=0.0
    STEP-REPEAT {
       NAME=PCB
       X=0.5
       ...
    }

Top-level KEY=VALUE pairs live in the root block (the data store itself);
named blocks may repeat and keep declaration order. Blocks do not nest.
"""

import logging
from pathlib import Path
from typing import Optional

from .errors import InvalidKeyError, StructuredTextError
from .utils import parse_float, parse_int

log = logging.getLogger(__name__)


class Block:
    """A named section holding ordered KEY=VALUE pairs."""

    def __init__(self, name: str = "", line_no: int = 0):
        self.name = name.upper()
        self.line_no = line_no
        self._values = {}

    def __repr__(self):
        return f"Block({self.name!r}, {len(self._values)} keys)"

    def __contains__(self, key):
        return key.upper() in self._values

    def __len__(self):
        return len(self._values)

    def put(self, key: str, value: str):
        # A repeated key keeps its first position and the last value.
        self._values[key.upper()] = value

    def get(self, key: str) -> str:
        """Return the value of key, raising InvalidKeyError if absent."""
        try:
            return self._values[key.upper()]
        except KeyError:
            raise InvalidKeyError(key, self.name or None) from None

    def find(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Return the value of key, or default if absent."""
        return self._values.get(key.upper(), default)

    def get_float(self, key: str) -> float:
        return parse_float(self.get(key))

    def get_int(self, key: str) -> int:
        return parse_int(self.get(key))

    def get_bool(self, key: str) -> bool:
        return self.get(key).strip().upper() in ("YES", "Y", "TRUE", "1")

    def keys(self):
        return list(self._values.keys())

    def items(self):
        return list(self._values.items())


class StructuredTextDataStore(Block):
    """Root block of a parsed structured-text file."""

    def __init__(self, path=None):
        super().__init__("")
        self.path = path
        self.blocks = []

    def __repr__(self):
        return (f"StructuredTextDataStore({self.path!s}, "
                f"{len(self._values)} keys, {len(self.blocks)} blocks)")

    def add_block(self, block: Block):
        self.blocks.append(block)

    def get_blocks_by_key(self, name: str) -> list:
        """All blocks called name, in file order. May be empty."""
        name = name.upper()
        return [b for b in self.blocks if b.name == name]

    def block_names(self) -> list:
        names = []
        for b in self.blocks:
            if b.name not in names:
                names.append(b.name)
        return names


class StructuredTextParser:
    """Single forward pass over a structured-text file."""

    def parse(self, path) -> StructuredTextDataStore:
        path = Path(path)
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise StructuredTextError(f"cannot read file: {e}", path) from e

        store = self.parse_text(content, path)
        log.debug("Parsed %s: %d keys, %d blocks",
                  path, len(store), len(store.blocks))
        return store

    def parse_text(self, content: str, path=None) -> StructuredTextDataStore:
        store = StructuredTextDataStore(path)
        current = None  # open block, None while at root level
        pending = None  # (name, line_no) of a bare block name awaiting "{"

        for line_no, raw in enumerate(content.splitlines(), 1):
            line = raw.strip()

            if not line or line.startswith("#"):
                continue

            if pending is not None:
                if line != "{":
                    raise StructuredTextError(
                        f"expected '{{' after block name {pending[0]!r}",
                        path, line_no)
                current = Block(pending[0], pending[1])
                pending = None
                continue

            if line == "}":
                if current is None:
                    raise StructuredTextError("unbalanced '}'", path, line_no)
                store.add_block(current)
                current = None
                continue

            if line.endswith("{"):
                if current is not None:
                    raise StructuredTextError(
                        f"nested block inside {current.name!r}", path, line_no)
                name = line[:-1].strip()
                if not name or "=" in name:
                    raise StructuredTextError(
                        f"invalid block header {line!r}", path, line_no)
                current = Block(name, line_no)
                continue

            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                if not key:
                    raise StructuredTextError(
                        f"missing key in {line!r}", path, line_no)
                (current if current is not None else store).put(
                    key, value.strip())
                continue

            if current is None and " " not in line:
                pending = (line, line_no)
                continue

            raise StructuredTextError(f"unexpected line {line!r}", path, line_no)

        if pending is not None:
            raise StructuredTextError(
                f"block {pending[0]!r} has no body", path, pending[1])
        if current is not None:
            raise StructuredTextError(
                f"block {current.name!r} is not closed", path, current.line_no)

        return store


def parse_structured_text(path) -> StructuredTextDataStore:
    """Parse a structured-text file and return its data store."""
    return StructuredTextParser().parse(path)
