"""Symbol geometry built from features records.

Every record kind maps to one Symbol subclass. Geometry is built with
shapely in file coordinates and flipped into scene coordinates (Y+ down).
A symbol keeps its untransformed local geometry plus the accumulated
per-instance transform set by the step-repeat engine.
"""

import logging
import re
from typing import Optional

from shapely import affinity
from shapely.errors import GEOSException
from shapely.geometry import LineString, Point, Polygon, box
from shapely.ops import unary_union

from .errors import SymbolError
from .feature_model import FeatureKind, OperationType, Polarity, Record
from .geometry import Affine, Rect
from .utils import arc_points, direction_angle, fmt

log = logging.getLogger(__name__)

# Bounding boxes more elongated than this look like traces
TRACE_ASPECT_RATIO = 2.0

_NUM = r"([\d.]+)"


def _to_scene(geom):
    return affinity.scale(geom, xfact=1.0, yfact=-1.0, origin=(0, 0))


def _stadium(w, h):
    if w == h:
        return Point(0, 0).buffer(w / 2)
    if w > h:
        half = (w - h) / 2
        return LineString([(-half, 0), (half, 0)]).buffer(h / 2)
    half = (h - w) / 2
    return LineString([(0, -half), (0, half)]).buffer(w / 2)


def _octagon(w, h, r):
    r = min(r, w / 2, h / 2)
    hw, hh = w / 2, h / 2
    return Polygon([
        (-hw + r, hh), (hw - r, hh), (hw, hh - r), (hw, -hh + r),
        (hw - r, -hh), (-hw + r, -hh), (-hw, -hh + r), (-hw, hh - r),
    ])


def standard_symbol(name: str, scale: float = 0.001):
    """Decode a standard ODB++ symbol name into geometry centered at 0,0.

    Common patterns:
        r<d>                 - round
        s<s>                 - square
        rect<w>x<h>[xr<r>]   - rectangle, optionally rounded
        oval<w>x<h>          - oval
        di<w>x<h>            - diamond
        oct<w>x<h>x<r>       - octagon
        el<w>x<h>            - ellipse
        tri<base>x<h>        - triangle
        donut_r<od>x<id>     - annular ring
        donut_s<od>x<id>     - square ring
        thr/ths<od>x<id>...  - round thermal (drawn as its ring)
        s_thr/s_ths<od>x<id> - square thermal (drawn as its ring)
        hex_l/hex_s<w>x<h>x<r>
    Dimensions are multiplied by scale (mils or microns to file units).
    Returns None for names that are not standard symbols.
    """
    n = name.strip().lower()

    m = re.match(rf"^r{_NUM}$", n)
    if m:
        d = float(m.group(1)) * scale
        return Point(0, 0).buffer(d / 2) if d > 0 else Point(0, 0)

    m = re.match(rf"^s{_NUM}$", n)
    if m:
        d = float(m.group(1)) * scale
        return box(-d / 2, -d / 2, d / 2, d / 2)

    m = re.match(rf"^rect{_NUM}x{_NUM}(?:x(r|c){_NUM}(?:x\d+)?)?$", n)
    if m:
        w = float(m.group(1)) * scale
        h = float(m.group(2)) * scale
        rect = box(-w / 2, -h / 2, w / 2, h / 2)
        if m.group(3) == "r":
            r = float(m.group(4)) * scale
            if 0 < r < min(w, h) / 2:
                rect = rect.buffer(-r, join_style="mitre").buffer(r)
        return rect

    m = re.match(rf"^oval{_NUM}x{_NUM}$", n)
    if m:
        return _stadium(float(m.group(1)) * scale, float(m.group(2)) * scale)

    m = re.match(rf"^di{_NUM}x{_NUM}$", n)
    if m:
        w = float(m.group(1)) * scale
        h = float(m.group(2)) * scale
        return Polygon([(0, h / 2), (w / 2, 0), (0, -h / 2), (-w / 2, 0)])

    m = re.match(rf"^oct{_NUM}x{_NUM}x{_NUM}$", n)
    if m:
        return _octagon(float(m.group(1)) * scale, float(m.group(2)) * scale,
                        float(m.group(3)) * scale)

    m = re.match(rf"^el{_NUM}x{_NUM}$", n)
    if m:
        w = float(m.group(1)) * scale
        h = float(m.group(2)) * scale
        return affinity.scale(Point(0, 0).buffer(1.0), w / 2, h / 2)

    m = re.match(rf"^tri{_NUM}x{_NUM}$", n)
    if m:
        b = float(m.group(1)) * scale
        h = float(m.group(2)) * scale
        return Polygon([(-b / 2, -h / 2), (b / 2, -h / 2), (0, h / 2)])

    m = re.match(rf"^(?:donut_r|thr?|ths){_NUM}x{_NUM}", n)
    if m:
        od = float(m.group(1)) * scale
        id_ = float(m.group(2)) * scale
        return Point(0, 0).buffer(od / 2).difference(Point(0, 0).buffer(id_ / 2))

    m = re.match(rf"^(?:donut_s|s_thr?|s_ths){_NUM}x{_NUM}", n)
    if m:
        od = float(m.group(1)) * scale
        id_ = float(m.group(2)) * scale
        return box(-od / 2, -od / 2, od / 2, od / 2).difference(
            box(-id_ / 2, -id_ / 2, id_ / 2, id_ / 2))

    m = re.match(rf"^hex_(l|s){_NUM}x{_NUM}x{_NUM}$", n)
    if m:
        w = float(m.group(2)) * scale
        h = float(m.group(3)) * scale
        r = float(m.group(4)) * scale
        if m.group(1) == "l":
            return Polygon([(-w / 2, 0), (-w / 2 + r, h / 2), (w / 2 - r, h / 2),
                            (w / 2, 0), (w / 2 - r, -h / 2), (-w / 2 + r, -h / 2)])
        return Polygon([(0, -h / 2), (w / 2, -h / 2 + r), (w / 2, h / 2 - r),
                        (0, h / 2), (-w / 2, h / 2 - r), (-w / 2, -h / 2 + r)])

    return None


def line_pen(name: str, scale: float = 0.001):
    """Stroke width and cap style for a line/arc drawn with symbol name."""
    n = name.strip().lower()
    m = re.match(rf"^s{_NUM}$", n)
    if m:
        return float(m.group(1)) * scale, "square"
    m = re.match(rf"^r{_NUM}$", n)
    if m:
        return float(m.group(1)) * scale, "round"
    shape = standard_symbol(n, scale)
    if shape is None or shape.is_empty:
        return 0.0, "round"
    min_x, min_y, max_x, max_y = shape.bounds
    return min(max_x - min_x, max_y - min_y), "round"


def _stroke(points, width, cap):
    if len(set(points)) == 1:
        p = Point(points[0])
        if width <= 0:
            return p
        if cap == "square":
            x, y = points[0]
            return box(x - width / 2, y - width / 2, x + width / 2, y + width / 2)
        return p.buffer(width / 2)
    line = LineString(points)
    if width <= 0:
        return line
    return line.buffer(width / 2, cap_style=cap)


def _place(geom, x, y, angle, mirror):
    """Mirror, rotate clockwise by angle, then move to x, y (file coords)."""
    if mirror:
        geom = affinity.scale(geom, xfact=-1.0, yfact=1.0, origin=(0, 0))
    if angle:
        geom = affinity.rotate(geom, -angle, origin=(0, 0))
    return affinity.translate(geom, x, y)


class Symbol:
    """Base class for all feature symbols."""

    kind: FeatureKind = None

    def __init__(self, record: Record):
        self.record = record
        self.polarity = record.polarity
        self.dcode = record.dcode
        self.attributes = record.attributes
        self.transform = Affine()
        self.visible = True

        geom = self._build()
        if geom is None or geom.is_empty:
            raise SymbolError(f"{self.name} has no geometry")
        self._local = _to_scene(geom)
        self._bounding = Rect.from_geometry(self._local)

    def __repr__(self):
        return f"<{type(self).__name__} {self.info_text()}>"

    @property
    def name(self):
        return self.kind.value

    @property
    def polarity_str(self):
        return "POS" if self.polarity == Polarity.POS else "NEG"

    def _build(self):
        raise NotImplementedError

    def path(self):
        """Scene geometry with the instance transform applied."""
        return self.transform.apply(self._local)

    def bounding_rect(self) -> Rect:
        r = self._bounding
        if self.transform.is_identity():
            return r
        corners = [self.transform.map(x, y) for x, y in
                   ((r.x, r.y), (r.right, r.y), (r.x, r.bottom), (r.right, r.bottom))]
        xs = [c[0] for c in corners]
        ys = [c[1] for c in corners]
        return Rect.from_bounds(min(xs), min(ys), max(xs), max(ys))

    def apply_transform(self, affine: Affine):
        """Compose affine after the current instance transform."""
        self.transform = self.transform * affine

    def get_width(self) -> float:
        w, h = self._bounding.width, self._bounding.height
        if w <= 0 or h <= 0:
            return -1.0
        return min(w, h)

    def is_trace(self, threshold: float = TRACE_ASPECT_RATIO) -> bool:
        w, h = self._bounding.width, self._bounding.height
        if w <= 0 or h <= 0:
            return False
        return max(w, h) / min(w, h) > threshold

    def get_angle(self) -> float:
        return -1.0

    def info_text(self) -> str:
        return f"{self.name}, {self.polarity_str}"

    def long_info_text(self) -> str:
        return f"{self.name}\n\nPolarity\t= {self.polarity_str}\n"


class LineSymbol(Symbol):
    kind = FeatureKind.LINE

    def _build(self):
        rec = self.record
        width, cap = line_pen(rec.sym_name, rec.sym_scale)
        return _stroke([(rec.xs, rec.ys), (rec.xe, rec.ye)], width, cap)

    def get_angle(self):
        rec = self.record
        return direction_angle(rec.xe - rec.xs, rec.ye - rec.ys)

    def info_text(self):
        rec = self.record
        return (f"Line, XS={fmt(rec.xs)}, YS={fmt(rec.ys)}, XE={fmt(rec.xe)}, "
                f"YE={fmt(rec.ye)}, {rec.sym_name}, {self.polarity_str}")

    def long_info_text(self):
        rec = self.record
        return (f"Line\n\n"
                f"XS\t= {fmt(rec.xs)}\nYS\t= {fmt(rec.ys)}\n"
                f"XE\t= {fmt(rec.xe)}\nYE\t= {fmt(rec.ye)}\n"
                f"Symbol\t= {rec.sym_name}\nPolarity\t= {self.polarity_str}\n")


class PadSymbol(Symbol):
    kind = FeatureKind.PAD

    def _build(self):
        rec = self.record
        shape = standard_symbol(rec.sym_name, rec.sym_scale * rec.resize_factor)
        if shape is None:
            raise SymbolError(f"unsupported pad symbol {rec.sym_name!r}")
        return _place(shape, rec.x, rec.y, rec.angle, rec.mirror)

    def info_text(self):
        rec = self.record
        return (f"Pad, X={fmt(rec.x)}, Y={fmt(rec.y)}, {rec.sym_name}, "
                f"{self.polarity_str}")

    def long_info_text(self):
        rec = self.record
        return (f"Pad\n\n"
                f"X\t= {fmt(rec.x)}\nY\t= {fmt(rec.y)}\n"
                f"Symbol\t= {rec.sym_name}\nAngle\t= {fmt(rec.angle)}\n"
                f"Mirror\t= {'YES' if rec.mirror else 'NO'}\n"
                f"Polarity\t= {self.polarity_str}\n")


class ArcSymbol(Symbol):
    kind = FeatureKind.ARC

    def _build(self):
        rec = self.record
        width, cap = line_pen(rec.sym_name, rec.sym_scale)
        points = [(rec.xs, rec.ys)] + arc_points(
            rec.xs, rec.ys, rec.xe, rec.ye, rec.xc, rec.yc, rec.clockwise)
        return _stroke(points, width, cap)

    def get_angle(self):
        rec = self.record
        return direction_angle(rec.xe - rec.xs, rec.ye - rec.ys)

    def info_text(self):
        rec = self.record
        return (f"Arc, XS={fmt(rec.xs)}, YS={fmt(rec.ys)}, XE={fmt(rec.xe)}, "
                f"YE={fmt(rec.ye)}, XC={fmt(rec.xc)}, YC={fmt(rec.yc)}, "
                f"{rec.sym_name}, {'CW' if rec.clockwise else 'CCW'}, "
                f"{self.polarity_str}")


class TextSymbol(Symbol):
    kind = FeatureKind.TEXT

    def _build(self):
        rec = self.record
        if not rec.text:
            raise SymbolError("empty text")
        width = rec.xsize * rec.width_factor * len(rec.text)
        if width <= 0 or rec.ysize <= 0:
            raise SymbolError("text has no size")
        return _place(box(0, 0, width, rec.ysize), rec.x, rec.y,
                      rec.angle, rec.mirror)

    def info_text(self):
        rec = self.record
        return (f"Text, X={fmt(rec.x)}, Y={fmt(rec.y)}, '{rec.text}', "
                f"{self.polarity_str}")


class BarcodeSymbol(Symbol):
    kind = FeatureKind.BARCODE

    def _build(self):
        rec = self.record
        if rec.width <= 0 or rec.height <= 0:
            raise SymbolError("barcode has no size")
        return _place(box(0, 0, rec.width, rec.height), rec.x, rec.y,
                      rec.angle, rec.mirror)

    def info_text(self):
        rec = self.record
        return (f"Barcode, X={fmt(rec.x)}, Y={fmt(rec.y)}, {rec.barcode}, "
                f"'{rec.text}', {self.polarity_str}")


class SurfaceSymbol(Symbol):
    kind = FeatureKind.SURFACE

    def __init__(self, record):
        self.island_count = 0
        self.hole_count = 0
        super().__init__(record)

    def _build(self):
        islands = []
        holes = []
        self.island_count = 0
        self.hole_count = 0

        for poly in self.record.polygons:
            points = [(poly.xbs, poly.ybs)]
            for op in poly.operations:
                if op.type == OperationType.SEGMENT:
                    points.append((op.x, op.y))
                else:
                    points.extend(arc_points(points[-1][0], points[-1][1],
                                             op.xe, op.ye, op.xc, op.yc,
                                             op.clockwise))
            if len(set(points)) < 3:
                log.warning("Skipping degenerate contour at (%s, %s) "
                            "in surface at line %d", fmt(poly.xbs),
                            fmt(poly.ybs), self.record.line_no)
                continue
            shape = Polygon(points)
            if not shape.is_valid:
                shape = shape.buffer(0)

            if poly.is_island:
                islands.append(shape)
                self.island_count += 1
            else:
                holes.append(shape)
                self.hole_count += 1

        area = unary_union(islands)
        if holes:
            area = area.difference(unary_union(holes))
        return area

    def get_angle(self):
        polygons = self.record.polygons
        if not polygons:
            return -1.0

        polygon = polygons[0]
        if not polygon.operations:
            # Fallback: bounding box diagonal
            return direction_angle(self._bounding.width, self._bounding.height)

        ex, ey = polygon.operations[0].end
        return direction_angle(ex - polygon.xbs, ey - polygon.ybs)

    def info_text(self):
        cx, cy = self._bounding.center()
        return (f"Surface, XC={fmt(cx)}, YC={fmt(cy)}, "
                f"Islands={self.island_count}, Holes={self.hole_count}, "
                f"{self.polarity_str}")

    def long_info_text(self):
        cx, cy = self._bounding.center()
        result = (f"Surface\n\n"
                  f"XC\t= {fmt(cx)}\nYC\t= {fmt(cy)}\n"
                  f"Islands\t= {self.island_count}\n"
                  f"Holes\t= {self.hole_count}\n"
                  f"Polarity\t= {self.polarity_str}\n")
        angle = self.get_angle()
        if angle >= 0:
            result += f"Angle\t= {angle:.2f}\n"
        return result


SYMBOL_TYPES = {
    FeatureKind.LINE: LineSymbol,
    FeatureKind.PAD: PadSymbol,
    FeatureKind.ARC: ArcSymbol,
    FeatureKind.SURFACE: SurfaceSymbol,
    FeatureKind.TEXT: TextSymbol,
    FeatureKind.BARCODE: BarcodeSymbol,
}


def create_symbol(record: Record) -> Optional[Symbol]:
    """Build the symbol for a record; None (and a warning) if it cannot."""
    try:
        return SYMBOL_TYPES[record.kind](record)
    except (ValueError, GEOSException) as e:
        log.warning("No symbol for %s record at line %d: %s",
                    record.kind.value, record.line_no, e)
        return None
