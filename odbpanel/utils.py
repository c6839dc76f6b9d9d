"""Utility functions for ODB++ panel loading.

Handles lenient number parsing, unit scaling of symbol
dimensions, and arc flattening.
"""

import math

# Points per full circle when flattening arcs and curves
ARC_SEGMENTS = 64


def fmt(value: float) -> str:
    """Format a float with 6 decimal places, strip trailing zeros."""
    s = f"{value:.6f}"
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    if s == "-0":
        s = "0"
    return s


def parse_float(s: str) -> float:
    """Parse a float string, returning 0.0 when it is not a number."""
    try:
        return float(s)
    except (ValueError, TypeError):
        return 0.0


def parse_int(s: str) -> int:
    """Parse an int string, returning 0 when it is not a number."""
    try:
        return int(s)
    except (ValueError, TypeError):
        try:
            return int(float(s))
        except (ValueError, TypeError):
            return 0


def symbol_scale(units: str, symbol_units: str = "") -> float:
    """Factor from symbol-name dimensions to coordinate units.

    Symbol dimensions are mils in inch jobs and microns in mm jobs, so the
    factor is 1/1000 unless the symbol declares the other unit system.
    """
    units = (units or "INCH").upper()
    symbol_units = (symbol_units or "").upper()
    if symbol_units == "M" and units == "INCH":
        return 0.001 / 25.4
    if symbol_units == "I" and units == "MM":
        return 0.001 * 25.4
    return 0.001


def normalize_angle(degrees: float) -> float:
    """Map an angle to [0, 360)."""
    angle = math.fmod(degrees, 360.0)
    if angle < 0:
        angle += 360.0
    if angle >= 360.0:
        angle = 0.0
    return angle


def direction_angle(dx: float, dy: float) -> float:
    """Direction of (dx, dy) in degrees, or -1 for zero displacement."""
    if dx == 0 and dy == 0:
        return -1.0
    return normalize_angle(math.degrees(math.atan2(dy, dx)))


def arc_points(sx: float, sy: float, ex: float, ey: float,
               cx: float, cy: float, clockwise: bool = False,
               segments: int = ARC_SEGMENTS):
    """Flatten an arc given by start/end/center into a list of points.

    The start point is not included, the end point is. Coincident start and
    end describe a full circle.
    """
    a_start = math.atan2(sy - cy, sx - cx)
    a_end = math.atan2(ey - cy, ex - cx)

    if clockwise:
        # CW: sweep goes from start to end in negative direction
        if a_end >= a_start:
            a_end -= 2 * math.pi
    else:
        # CCW: sweep goes from start to end in positive direction
        if a_end <= a_start:
            a_end += 2 * math.pi

    sweep = a_end - a_start
    radius = math.hypot(sx - cx, sy - cy)
    if radius == 0:
        return [(ex, ey)]

    steps = max(2, int(math.ceil(abs(sweep) / (2 * math.pi) * segments)))
    points = []
    for k in range(1, steps):
        a = a_start + sweep * k / steps
        points.append((cx + radius * math.cos(a), cy + radius * math.sin(a)))
    points.append((ex, ey))
    return points
