"""ODB++ features file parser.

A features file holds a small header, symbol/attribute tables and one
feature per line:

    UNITS=INCH
    $0 r10
    @0 .smd
    L <xs> <ys> <xe> <ye> <sym_num> <P|N> <dcode>;<attrs>
    P <x> <y> <apt_def> <P|N> <dcode> <orient_def>;<attrs>
    A <xs> <ys> <xe> <ye> <xc> <yc> <sym_num> <P|N> <dcode> <Y|N>;<attrs>
    T <x> <y> <font> <P|N> <orient_def> <xsize> <ysize> <width_factor> '<text>' <version>
    B <x> <y> <barcode> <font> <P|N> <orient_def> E <w> <h> ... '<text>'
    S <P|N> <dcode>;<attrs>
    OB <x> <y> <I|H>
    OS <x> <y>
    OC <xe> <ye> <xc> <yc> <Y|N>
    OE
    SE

Broken surface structure makes the whole file fail. A single malformed
record is logged and skipped, and parsing continues.
"""

import logging
import re
from pathlib import Path

from .errors import FeaturesError
from .feature_model import (
    ArcRecord, BarcodeRecord, FeatureCounts, LineRecord,
    OperationType, PadRecord, Polarity, PolygonRecord, PolygonType,
    SurfaceOperation, SurfaceRecord, TextRecord,
)
from .utils import symbol_scale

log = logging.getLogger(__name__)

_CONTOUR_TAGS = ("OB", "OS", "OC", "OE")
_QUOTED = re.compile(r"'(.*)'")


class FeaturesDataStore:
    """Records and count tables of one features file."""

    def __init__(self, path=None):
        self.path = path
        self.units = "INCH"
        self.header = {}
        self.symbols = {}  # sym_num -> symbol name
        self.symbol_units = {}  # sym_num -> "I" / "M" when given explicitly
        self.attribute_names = {}  # attr index -> name
        self.attribute_strings = {}  # string index -> text
        self.records = []
        self.counts = FeatureCounts()
        # Records dropped because they could not be decoded
        self.skipped = 0

    def __repr__(self):
        return f"FeaturesDataStore({self.path!s}, {len(self.records)} records)"

    def add_record(self, record):
        self.records.append(record)
        self.counts.add_record(record)

    def symbol_name(self, sym_num: int) -> str:
        try:
            return self.symbols[sym_num]
        except KeyError:
            raise ValueError(f"undefined symbol ${sym_num}") from None

    def symbol_scale(self, sym_num: int) -> float:
        return symbol_scale(self.units, self.symbol_units.get(sym_num, ""))


def _split_attributes(line: str):
    """Split '<record>;<attributes>' without cutting through quoted text."""
    quote_end = line.rfind("'")
    idx = line.find(";", quote_end + 1 if quote_end >= 0 else 0)
    if idx < 0:
        return line, ""
    return line[:idx], line[idx + 1:]


def _orientation(tokens, i):
    """Decode orient_def at tokens[i]: returns (angle, mirror, next index)."""
    orient = int(tokens[i])
    if orient in (8, 9):
        return float(tokens[i + 1]), orient == 9, i + 2
    if 0 <= orient <= 7:
        return (orient % 4) * 90.0, orient >= 4, i + 1
    raise ValueError(f"invalid orientation {orient}")


class FeaturesParser:
    """Parse a features file into a FeaturesDataStore."""

    def parse(self, path) -> FeaturesDataStore:
        path = Path(path)
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise FeaturesError(f"cannot read file: {e}", path) from e

        ds = self.parse_text(content, path)
        log.info("Parsed %s: %d records, %d skipped",
                 path, len(ds.records), ds.skipped)
        return ds

    def parse_text(self, content: str, path=None) -> FeaturesDataStore:
        self.ds = ds = FeaturesDataStore(path)
        self._path = path
        surface = None  # open SurfaceRecord
        surface_ok = True
        contour = None  # open PolygonRecord, or False for a broken contour
        surface_line = 0

        for line_no, raw in enumerate(content.splitlines(), 1):
            line = raw.strip()

            if not line or line.startswith("#"):
                continue

            tag = line.split(None, 1)[0].upper()

            # ── Surface bodies ──────────────────────────────────────────
            if tag in _CONTOUR_TAGS or tag == "SE":
                if surface is None:
                    raise FeaturesError(f"{tag} outside of a surface",
                                        path, line_no)
                if tag == "SE":
                    if contour is not None:
                        raise FeaturesError("SE inside an open contour",
                                            path, line_no)
                    if surface_ok:
                        ds.add_record(surface)
                    else:
                        ds.skipped += 1
                    surface = None
                    continue
                if tag == "OB":
                    if contour is not None:
                        raise FeaturesError("OB inside an open contour",
                                            path, line_no)
                    try:
                        contour = self._decode_contour_start(line)
                    except (ValueError, IndexError) as e:
                        self._skip(line_no, tag, e, count=False)
                        contour = False
                        surface_ok = False
                    continue
                if contour is None:
                    raise FeaturesError(f"{tag} outside of a contour",
                                        path, line_no)
                if tag == "OE":
                    if contour is not False:
                        surface.polygons.append(contour)
                    contour = None
                    continue
                if contour is False:
                    continue
                try:
                    contour.operations.append(self._decode_operation(line))
                except (ValueError, IndexError) as e:
                    self._skip(line_no, tag, e, count=False)
                    contour = False
                    surface_ok = False
                continue

            if surface is not None:
                raise FeaturesError(
                    f"surface opened at line {surface_line} is not closed",
                    path, line_no)

            # ── Header and tables ───────────────────────────────────────
            if tag.startswith("$"):
                self._decode_symbol_entry(line, line_no)
                continue
            if tag.startswith("@") or tag.startswith("&"):
                self._decode_table_entry(line, line_no)
                continue
            if "=" in tag:
                key, _, value = line.partition("=")
                key = key.strip().upper()
                ds.header[key] = value.strip()
                if key == "UNITS":
                    ds.units = value.strip().upper()
                continue
            if tag in ("U", "F", "ID"):
                parts = line.split()
                value = parts[1] if len(parts) > 1 else ""
                ds.header[tag] = value
                if tag == "U":
                    ds.units = value.upper()
                continue

            # ── Feature records ─────────────────────────────────────────
            if tag == "S":
                surface_line = line_no
                contour = None
                try:
                    surface = self._decode_surface(line, line_no)
                    surface_ok = True
                except (ValueError, IndexError) as e:
                    self._skip(line_no, tag, e, count=False)
                    surface = SurfaceRecord(line_no=line_no)
                    surface_ok = False
                continue

            decode = self._decoders.get(tag)
            if decode is None:
                self._skip(line_no, tag, "unknown record type")
                continue
            try:
                ds.add_record(decode(self, line, line_no))
            except (ValueError, IndexError) as e:
                self._skip(line_no, tag, e)

        if contour is not None or surface is not None:
            raise FeaturesError(
                f"surface opened at line {surface_line} is not closed",
                path, surface_line)

        return ds

    def _skip(self, line_no, tag, reason, count=True):
        # A broken surface is counted once, when its SE is reached
        if count:
            self.ds.skipped += 1
        log.warning("%s:%d: skipping %s record: %s",
                    self._path, line_no, tag, reason)

    # ── Tables ──────────────────────────────────────────────────────────

    def _decode_symbol_entry(self, line, line_no):
        parts = line.split()
        try:
            num = int(parts[0][1:])
            name = parts[1]
        except (ValueError, IndexError):
            self._skip(line_no, "$", f"bad symbol entry {line!r}")
            return
        self.ds.symbols[num] = name
        if len(parts) > 2 and parts[2].upper() in ("I", "M"):
            self.ds.symbol_units[num] = parts[2].upper()

    def _decode_table_entry(self, line, line_no):
        head, _, value = line.partition(" ")
        try:
            num = int(head[1:])
        except ValueError:
            self._skip(line_no, head[:1], f"bad table entry {line!r}")
            return
        if head[0] == "@":
            self.ds.attribute_names[num] = value.strip()
        else:
            self.ds.attribute_strings[num] = value.strip()

    def _decode_attributes(self, text, record):
        for piece in text.split(";"):
            piece = piece.strip()
            if not piece:
                continue
            if piece.upper().startswith("ID="):
                record.feature_id = int(piece[3:])
                continue
            for item in piece.split(","):
                item = item.strip()
                if not item:
                    continue
                idx, sep, value = item.partition("=")
                idx = int(idx)
                name = self.ds.attribute_names.get(idx, f"@{idx}")
                record.attributes[name] = value if sep else True
        return record

    def _symbol_fields(self, sym_num):
        return {
            "sym_num": sym_num,
            "sym_name": self.ds.symbol_name(sym_num),
            "sym_scale": self.ds.symbol_scale(sym_num),
        }

    # ── Records ─────────────────────────────────────────────────────────

    def _decode_line(self, line, line_no):
        body, attrs = _split_attributes(line)
        t = body.split()
        if len(t) < 7:
            raise ValueError("expected at least 7 fields")
        rec = LineRecord(
            xs=float(t[1]), ys=float(t[2]), xe=float(t[3]), ye=float(t[4]),
            polarity=Polarity.from_token(t[6]),
            dcode=int(t[7]) if len(t) > 7 else 0,
            line_no=line_no,
            **self._symbol_fields(int(t[5])),
        )
        return self._decode_attributes(attrs, rec)

    def _decode_pad(self, line, line_no):
        body, attrs = _split_attributes(line)
        t = body.split()
        if len(t) < 5:
            raise ValueError("expected at least 5 fields")
        resize = 1.0
        if t[3] == "-1":
            sym_num = int(t[4])
            resize = float(t[5])
            i = 6
        else:
            sym_num = int(t[3])
            i = 4
        polarity = Polarity.from_token(t[i])
        dcode = int(t[i + 1]) if len(t) > i + 1 else 0
        angle, mirror = 0.0, False
        if len(t) > i + 2:
            angle, mirror, _ = _orientation(t, i + 2)
        rec = PadRecord(
            x=float(t[1]), y=float(t[2]), resize_factor=resize,
            angle=angle, mirror=mirror, polarity=polarity, dcode=dcode,
            line_no=line_no, **self._symbol_fields(sym_num),
        )
        return self._decode_attributes(attrs, rec)

    def _decode_arc(self, line, line_no):
        body, attrs = _split_attributes(line)
        t = body.split()
        if len(t) < 11:
            raise ValueError("expected 11 fields")
        cw = t[10].upper()
        if cw not in ("Y", "N"):
            raise ValueError(f"invalid direction {t[10]!r}")
        rec = ArcRecord(
            xs=float(t[1]), ys=float(t[2]), xe=float(t[3]), ye=float(t[4]),
            xc=float(t[5]), yc=float(t[6]),
            polarity=Polarity.from_token(t[8]), dcode=int(t[9]),
            clockwise=(cw == "Y"), line_no=line_no,
            **self._symbol_fields(int(t[7])),
        )
        return self._decode_attributes(attrs, rec)

    def _decode_text(self, line, line_no):
        body, attrs = _split_attributes(line)
        m = _QUOTED.search(body)
        if not m:
            raise ValueError("missing quoted text")
        t = body[:m.start()].split()
        post = body[m.end():].split()
        if len(t) < 9:
            raise ValueError("expected at least 9 fields before text")
        angle, mirror, i = _orientation(t, 5)
        rec = TextRecord(
            x=float(t[1]), y=float(t[2]), font=t[3],
            polarity=Polarity.from_token(t[4]),
            angle=angle, mirror=mirror,
            xsize=float(t[i]), ysize=float(t[i + 1]),
            width_factor=float(t[i + 2]),
            text=m.group(1),
            version=int(post[0]) if post else 0,
            line_no=line_no,
        )
        return self._decode_attributes(attrs, rec)

    def _decode_barcode(self, line, line_no):
        body, attrs = _split_attributes(line)
        m = _QUOTED.search(body)
        if not m:
            raise ValueError("missing quoted text")
        t = body[:m.start()].split()
        if len(t) < 10:
            raise ValueError("expected at least 10 fields before text")
        angle, mirror, i = _orientation(t, 6)
        # t[i] is the E/T flag, then width and height
        rec = BarcodeRecord(
            x=float(t[1]), y=float(t[2]), barcode=t[3], font=t[4],
            polarity=Polarity.from_token(t[5]),
            angle=angle, mirror=mirror,
            width=float(t[i + 1]), height=float(t[i + 2]),
            text=m.group(1), line_no=line_no,
        )
        return self._decode_attributes(attrs, rec)

    def _decode_surface(self, line, line_no):
        body, attrs = _split_attributes(line)
        t = body.split()
        if len(t) < 2:
            raise ValueError("expected polarity")
        rec = SurfaceRecord(
            polarity=Polarity.from_token(t[1]),
            dcode=int(t[2]) if len(t) > 2 else 0,
            line_no=line_no,
        )
        return self._decode_attributes(attrs, rec)

    def _decode_contour_start(self, line):
        t = line.split()
        kind = t[3].upper() if len(t) > 3 else "I"
        if kind not in ("I", "H"):
            raise ValueError(f"invalid polygon type {t[3]!r}")
        return PolygonRecord(xbs=float(t[1]), ybs=float(t[2]),
                             poly_type=PolygonType(kind))

    def _decode_operation(self, line):
        t = line.split()
        if t[0].upper() == "OS":
            return SurfaceOperation(type=OperationType.SEGMENT,
                                    x=float(t[1]), y=float(t[2]))
        cw = t[5].upper()
        if cw not in ("Y", "N"):
            raise ValueError(f"invalid direction {t[5]!r}")
        return SurfaceOperation(type=OperationType.CURVE,
                                xe=float(t[1]), ye=float(t[2]),
                                xc=float(t[3]), yc=float(t[4]),
                                clockwise=(cw == "Y"))

    _decoders = {
        "L": _decode_line,
        "P": _decode_pad,
        "A": _decode_arc,
        "T": _decode_text,
        "B": _decode_barcode,
    }


def parse_features(path) -> FeaturesDataStore:
    """Parse a features file and return its data store."""
    return FeaturesParser().parse(path)
