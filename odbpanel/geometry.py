"""Scene geometry primitives: rectangles and affine transforms.

Affine follows the QTransform conventions the scene model was designed
around: points are row vectors, and scale()/rotate()/translate() calls
pre-multiply, so the operation requested last is applied to a point first.
"""

import math
from dataclasses import dataclass

from shapely import affinity


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle (x, y is the top-left corner in scene units)."""
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @classmethod
    def from_bounds(cls, min_x, min_y, max_x, max_y):
        return cls(min_x, min_y, max_x - min_x, max_y - min_y)

    @classmethod
    def from_geometry(cls, geom):
        if geom is None or geom.is_empty:
            return cls()
        return cls.from_bounds(*geom.bounds)

    @classmethod
    def bounding(cls, rects):
        """Union of rects, or None when there are none.

        A zero-size rect is a point and still counts.
        """
        bounds = None
        for rect in rects:
            bounds = rect if bounds is None else bounds.united(rect)
        return bounds

    @property
    def right(self):
        return self.x + self.width

    @property
    def bottom(self):
        return self.y + self.height

    def center(self):
        return (self.x + self.width / 2, self.y + self.height / 2)

    def is_null(self):
        return self.width == 0 and self.height == 0

    def united(self, other: "Rect") -> "Rect":
        return Rect.from_bounds(min(self.x, other.x), min(self.y, other.y),
                                max(self.right, other.right),
                                max(self.bottom, other.bottom))

    def adjusted(self, dx1, dy1, dx2, dy2) -> "Rect":
        return Rect.from_bounds(self.x + dx1, self.y + dy1,
                                self.right + dx2, self.bottom + dy2)

    def as_list(self):
        return [self.x, self.y, self.width, self.height]


@dataclass(frozen=True)
class Affine:
    """2D affine transform with QTransform semantics.

    Maps (x, y) to (m11*x + m21*y + dx, m12*x + m22*y + dy).
    """
    m11: float = 1.0
    m12: float = 0.0
    m21: float = 0.0
    m22: float = 1.0
    dx: float = 0.0
    dy: float = 0.0

    @classmethod
    def from_translate(cls, tx, ty):
        return cls(dx=tx, dy=ty)

    @classmethod
    def from_scale(cls, sx, sy):
        return cls(m11=sx, m22=sy)

    @classmethod
    def from_rotate(cls, degrees):
        a = math.fmod(degrees, 360.0)
        if a < 0:
            a += 360.0
        # Exact values on the right angles
        exact = {0.0: (1.0, 0.0), 90.0: (0.0, 1.0),
                 180.0: (-1.0, 0.0), 270.0: (0.0, -1.0)}
        if a in exact:
            c, s = exact[a]
        else:
            rad = math.radians(a)
            c, s = math.cos(rad), math.sin(rad)
        return cls(m11=c, m12=s, m21=-s, m22=c)

    def __mul__(self, other: "Affine") -> "Affine":
        """Compose: the result applies self first, then other."""
        a, b = self, other
        return Affine(
            m11=a.m11 * b.m11 + a.m12 * b.m21,
            m12=a.m11 * b.m12 + a.m12 * b.m22,
            m21=a.m21 * b.m11 + a.m22 * b.m21,
            m22=a.m21 * b.m12 + a.m22 * b.m22,
            dx=a.dx * b.m11 + a.dy * b.m21 + b.dx,
            dy=a.dx * b.m12 + a.dy * b.m22 + b.dy,
        )

    def translate(self, tx, ty) -> "Affine":
        return Affine.from_translate(tx, ty) * self

    def scale(self, sx, sy) -> "Affine":
        return Affine.from_scale(sx, sy) * self

    def rotate(self, degrees) -> "Affine":
        return Affine.from_rotate(degrees) * self

    def is_identity(self):
        return self == Affine()

    def map(self, x, y):
        return (self.m11 * x + self.m21 * y + self.dx,
                self.m12 * x + self.m22 * y + self.dy)

    def shapely_params(self):
        """Coefficients in shapely.affinity.affine_transform order."""
        return [self.m11, self.m21, self.m12, self.m22, self.dx, self.dy]

    def apply(self, geom):
        if self.is_identity() or geom is None or geom.is_empty:
            return geom
        return affinity.affine_transform(geom, self.shapely_params())
