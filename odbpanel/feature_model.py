"""Record model for ODB++ features files.

One record per feature line (or per S ... SE block for surfaces). All
coordinates are stored as read from the file (Y+ up, file units); the
symbol layer converts them to scene coordinates.
"""

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Optional


class FeatureKind(Enum):
    LINE = "Line"
    PAD = "Pad"
    ARC = "Arc"
    SURFACE = "Surface"
    TEXT = "Text"
    BARCODE = "Barcode"


class Polarity(Enum):
    POS = "P"
    NEG = "N"

    @classmethod
    def from_token(cls, token: str) -> "Polarity":
        token = token.upper()
        if token == "P":
            return cls.POS
        if token == "N":
            return cls.NEG
        raise ValueError(f"invalid polarity {token!r}")


class PolygonType(Enum):
    ISLAND = "I"
    HOLE = "H"


class OperationType(Enum):
    SEGMENT = "OS"
    CURVE = "OC"


@dataclass
class SurfaceOperation:
    type: OperationType = OperationType.SEGMENT
    # SEGMENT end point
    x: float = 0.0
    y: float = 0.0
    # CURVE end point, center and direction
    xe: float = 0.0
    ye: float = 0.0
    xc: float = 0.0
    yc: float = 0.0
    clockwise: bool = False

    @property
    def end(self):
        if self.type == OperationType.SEGMENT:
            return (self.x, self.y)
        return (self.xe, self.ye)


@dataclass
class PolygonRecord:
    """One contour of a surface: OB x y I|H ... OE."""
    xbs: float = 0.0
    ybs: float = 0.0
    poly_type: PolygonType = PolygonType.ISLAND
    operations: list = field(default_factory=list)  # list of SurfaceOperation

    @property
    def is_island(self):
        return self.poly_type == PolygonType.ISLAND


@dataclass
class Record:
    kind: ClassVar[FeatureKind]

    polarity: Polarity = Polarity.POS
    dcode: int = 0
    attributes: dict = field(default_factory=dict)
    feature_id: Optional[int] = None
    line_no: int = 0

    @property
    def count_key(self) -> Optional[str]:
        """Key into the per-symbol count tables, None for scalar categories."""
        return None

    def create_symbol(self):
        """Build the symbol for this record, or None if geometry fails."""
        from .symbols import create_symbol
        return create_symbol(self)


@dataclass
class _SymbolRecord(Record):
    sym_num: int = 0
    sym_name: str = ""
    # symbol-name dimensions -> coordinate units
    sym_scale: float = 0.001

    @property
    def count_key(self):
        return self.sym_name


@dataclass
class LineRecord(_SymbolRecord):
    kind: ClassVar[FeatureKind] = FeatureKind.LINE

    xs: float = 0.0
    ys: float = 0.0
    xe: float = 0.0
    ye: float = 0.0


@dataclass
class PadRecord(_SymbolRecord):
    kind: ClassVar[FeatureKind] = FeatureKind.PAD

    x: float = 0.0
    y: float = 0.0
    resize_factor: float = 1.0
    angle: float = 0.0
    mirror: bool = False


@dataclass
class ArcRecord(_SymbolRecord):
    kind: ClassVar[FeatureKind] = FeatureKind.ARC

    xs: float = 0.0
    ys: float = 0.0
    xe: float = 0.0
    ye: float = 0.0
    xc: float = 0.0
    yc: float = 0.0
    clockwise: bool = False


@dataclass
class TextRecord(Record):
    kind: ClassVar[FeatureKind] = FeatureKind.TEXT

    x: float = 0.0
    y: float = 0.0
    font: str = "standard"
    angle: float = 0.0
    mirror: bool = False
    xsize: float = 0.0
    ysize: float = 0.0
    width_factor: float = 1.0
    text: str = ""
    version: int = 0


@dataclass
class BarcodeRecord(Record):
    kind: ClassVar[FeatureKind] = FeatureKind.BARCODE

    x: float = 0.0
    y: float = 0.0
    barcode: str = "UPC39"
    font: str = "standard"
    angle: float = 0.0
    mirror: bool = False
    width: float = 0.0
    height: float = 0.0
    text: str = ""


@dataclass
class SurfaceRecord(Record):
    kind: ClassVar[FeatureKind] = FeatureKind.SURFACE

    polygons: list = field(default_factory=list)  # list of PolygonRecord


_MAPPED = (FeatureKind.LINE, FeatureKind.PAD, FeatureKind.ARC)
_SCALAR = (FeatureKind.SURFACE, FeatureKind.TEXT, FeatureKind.BARCODE)


@dataclass
class FeatureCounts:
    """Polarity-split feature counts.

    Lines, pads and arcs are counted per symbol name; surfaces, text and
    barcodes are plain totals.
    """
    pos_line: Counter = field(default_factory=Counter)
    neg_line: Counter = field(default_factory=Counter)
    pos_pad: Counter = field(default_factory=Counter)
    neg_pad: Counter = field(default_factory=Counter)
    pos_arc: Counter = field(default_factory=Counter)
    neg_arc: Counter = field(default_factory=Counter)
    pos_surface: int = 0
    neg_surface: int = 0
    pos_text: int = 0
    neg_text: int = 0
    pos_barcode: int = 0
    neg_barcode: int = 0

    @staticmethod
    def _attr(kind: FeatureKind, polarity: Polarity) -> str:
        prefix = "pos" if polarity == Polarity.POS else "neg"
        return f"{prefix}_{kind.name.lower()}"

    def table(self, kind: FeatureKind, polarity: Polarity):
        """Count map (line/pad/arc) or scalar (surface/text/barcode)."""
        return getattr(self, self._attr(kind, polarity))

    def add_record(self, record: Record):
        name = self._attr(record.kind, record.polarity)
        if record.kind in _MAPPED:
            getattr(self, name)[record.count_key] += 1
        else:
            setattr(self, name, getattr(self, name) + 1)

    def merge(self, other: "FeatureCounts"):
        """Add other's counts into self, key by key."""
        for kind in _MAPPED:
            for polarity in Polarity:
                self.table(kind, polarity).update(other.table(kind, polarity))
        for kind in _SCALAR:
            for polarity in Polarity:
                name = self._attr(kind, polarity)
                setattr(self, name, getattr(self, name) + getattr(other, name))
        return self

    def copy(self) -> "FeatureCounts":
        return FeatureCounts().merge(self)

    @classmethod
    def fold(cls, counts) -> "FeatureCounts":
        total = cls()
        for c in counts:
            total.merge(c)
        return total

    def total(self, kind: FeatureKind, polarity: Optional[Polarity] = None) -> int:
        polarities = [polarity] if polarity else list(Polarity)
        n = 0
        for p in polarities:
            value = self.table(kind, p)
            n += sum(value.values()) if kind in _MAPPED else value
        return n

    def as_dict(self):
        result = {}
        for kind in FeatureKind:
            for polarity in Polarity:
                value = self.table(kind, polarity)
                result[self._attr(kind, polarity)] = (
                    dict(value) if kind in _MAPPED else value)
        return result
