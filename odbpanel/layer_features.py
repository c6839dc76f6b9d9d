"""Step-and-repeat expansion of one layer.

A LayerFeatures instance holds the symbols of one step's layer plus one
child instance per step-repeat cell listed in the step header. Children
are themselves LayerFeatures of the repeated step, placed with the
cell's mirror/rotation/offset; their counts are folded into the parent.

Scene coordinates are Y-down: a cell at file position (x, y) sits at
(x, -y), and the child's datum lands on that point.
"""

import logging
import weakref
from enum import Enum

from .errors import NotFoundError, ParseFailure, StepRepeatError
from .feature_model import FeatureCounts, FeatureKind, Polarity
from .geometry import Affine, Rect
from .symbols import TRACE_ASPECT_RATIO
from .utils import parse_float

log = logging.getLogger(__name__)

_DATUM_KEYS = ("X_DATUM", "Y_DATUM", "X_ORIGIN", "Y_ORIGIN")
_ACTIVE_KEYS = ("TOP_ACTIVE", "BOTTOM_ACTIVE", "LEFT_ACTIVE", "RIGHT_ACTIVE")

_REPORT_MAPPED = (("Lines", FeatureKind.LINE), ("Pad", FeatureKind.PAD),
                  ("Arc", FeatureKind.ARC))
_REPORT_SCALAR = (("Surface", FeatureKind.SURFACE), ("Text", FeatureKind.TEXT),
                  ("Barcode", FeatureKind.BARCODE))


class LoadState(Enum):
    CONSTRUCTED = "constructed"
    FEATURES_LOADED = "features_loaded"
    STEP_REPEAT_LOADED = "step_repeat_loaded"
    STEP_REPEAT_SKIPPED = "step_repeat_skipped"


class LayerFeatures:
    """Symbols of one step layer and its step-repeat children.

    Args:
        job: session providing resolve(logical) and a ParseCache as .cache
        step: step name (case-insensitive)
        path_template: logical features path with a {step} placeholder,
            e.g. "steps/{step}/layers/top/features"
        step_repeat: expand step-repeat cells now instead of on demand
        parent: instance that repeats this one, if any
    """

    def __init__(self, job, step, path_template, step_repeat=False,
                 parent=None):
        self.job = job
        self.step = step.lower()
        self.path_template = path_template
        self._parent = weakref.ref(parent) if parent is not None else None
        self.state = LoadState.CONSTRUCTED

        self.transform = Affine()
        self.visible = True
        self.x_datum = 0.0
        self.y_datum = 0.0
        self.x_origin = 0.0
        self.y_origin = 0.0
        self.active_rect = Rect()

        self._ds = None
        self._symbols = []
        self._repeats = []
        self._own_counts = FeatureCounts()
        self._counts = FeatureCounts()
        self._show_step_repeat = step_repeat

        self._check_recursion()
        self._load_features()

        if self._ds is None:
            return
        if step_repeat:
            self._load_step_repeat()
        else:
            self.state = LoadState.STEP_REPEAT_SKIPPED

    def __repr__(self):
        return (f"<LayerFeatures {self.step} {self.path_template!r} "
                f"{len(self._symbols)} symbols, {len(self._repeats)} repeats>")

    # ── Loading ───────────────────────────────────────────────────────

    @property
    def virtual_parent(self):
        return self._parent() if self._parent is not None else None

    @property
    def has_data(self):
        return self._ds is not None

    @property
    def features_path(self):
        return self.path_template.format(step=self.step)

    def _check_recursion(self):
        node = self.virtual_parent
        while node is not None:
            if node.step == self.step:
                raise StepRepeatError(
                    f"step {self.step!r} repeats itself")
            node = node.virtual_parent

    def _load_features(self):
        try:
            path = self.job.resolve(self.features_path)
            self._ds = self.job.cache.features(path)
        except (NotFoundError, ParseFailure) as e:
            log.error("Failed to load features %s: %s", self.features_path, e)
            return

        for record in self._ds.records:
            symbol = record.create_symbol()
            if symbol is not None:
                self._symbols.append(symbol)

        self._own_counts = self._ds.counts.copy()
        self._counts = self._own_counts.copy()
        self.state = LoadState.FEATURES_LOADED
        log.info("Created %d symbols from %d records in %s",
                 len(self._symbols), len(self._ds.records), self.features_path)

    def _load_header(self):
        """Read datum, origin and active margins; return the step header."""
        logical = f"steps/{self.step}/stephdr"
        try:
            hds = self.job.cache.structured_text(self.job.resolve(logical))
        except (NotFoundError, ParseFailure) as e:
            log.warning("No step header for %s: %s", self.step, e)
            return None

        missing = []
        values = {}
        for key in _DATUM_KEYS + _ACTIVE_KEYS:
            value = hds.find(key)
            if value is None:
                missing.append(key)
            values[key] = parse_float(value or "0")

        if any(key in missing for key in _DATUM_KEYS):
            log.warning("Step %s: header keys not found: %s", self.step,
                        ", ".join(k for k in missing if k in _DATUM_KEYS))

        self.x_datum = values["X_DATUM"]
        self.y_datum = values["Y_DATUM"]
        self.x_origin = values["X_ORIGIN"]
        self.y_origin = values["Y_ORIGIN"]

        if any(key in missing for key in _ACTIVE_KEYS):
            log.debug("Step %s has no active area", self.step)
        elif hds.get_blocks_by_key("STEP-REPEAT"):
            self.active_rect = self._own_bounding_rect().adjusted(
                values["LEFT_ACTIVE"], values["TOP_ACTIVE"],
                -values["RIGHT_ACTIVE"], -values["BOTTOM_ACTIVE"])
        return hds

    def _load_step_repeat(self):
        hds = self._load_header()
        if hds is not None:
            self._build_repeats(hds.get_blocks_by_key("STEP-REPEAT"))
        self._counts = FeatureCounts.fold(
            [self._own_counts] + [r.counts() for r in self._repeats])
        self.state = LoadState.STEP_REPEAT_LOADED
        log.info("Created %d step repeat instances for %s",
                 len(self._repeats), self.step)

    def _build_repeats(self, blocks):
        for block in blocks:
            try:
                name = block.get("NAME").lower()
                x, y = block.get_float("X"), block.get_float("Y")
                dx, dy = block.get_float("DX"), block.get_float("DY")
                nx, ny = block.get_int("NX"), block.get_int("NY")
                angle = block.get_float("ANGLE")
                mirror = block.get("MIRROR").strip().upper() == "YES"
            except KeyError as e:
                log.warning("Skipping STEP-REPEAT block at line %d: %s",
                            block.line_no, e)
                continue

            log.debug("Step repeat: %s at (%g,%g), delta (%g,%g), "
                      "array %dx%d, angle %g, mirror %s",
                      name, x, y, dx, dy, nx, ny, angle, mirror)

            for i in range(nx):
                for j in range(ny):
                    try:
                        child = LayerFeatures(self.job, name,
                                              self.path_template,
                                              step_repeat=True, parent=self)
                        trans = Affine()
                        if mirror:
                            trans = trans.scale(-1, 1)
                        trans = trans.rotate(angle)
                        trans = trans.translate(-child.x_datum, child.y_datum)
                        pos = Affine.from_translate(x + dx * i, -(y + dy * j))
                        child.place(trans * pos * self.transform)
                    except Exception as e:
                        log.error("Cannot create step repeat %s [%d,%d]: %s",
                                  name, i, j, e)
                        continue
                    child.visible = self._show_step_repeat
                    self._repeats.append(child)

    # ── Placement and visibility ──────────────────────────────────────

    def place(self, affine: Affine):
        """Compose affine after the current transform of the whole subtree."""
        for symbol in self._symbols:
            symbol.apply_transform(affine)
        for repeat in self._repeats:
            repeat.place(affine)
        self.transform = self.transform * affine

    def set_visible(self, status: bool):
        self.visible = status
        for symbol in self._symbols:
            symbol.visible = status
        for repeat in self._repeats:
            repeat.set_visible(status)

    @property
    def show_step_repeat(self):
        return self._show_step_repeat

    def set_show_step_repeat(self, status: bool):
        """Show or hide the step-repeat children, expanding them on first use."""
        self._show_step_repeat = status
        if status and self._ds is not None \
                and self.state != LoadState.STEP_REPEAT_LOADED:
            self._load_step_repeat()
        for repeat in self._repeats:
            repeat.set_visible(status)

    # ── Queries ───────────────────────────────────────────────────────

    @property
    def repeats(self):
        return list(self._repeats)

    def symbols(self):
        """Own symbols of this step, without repeats."""
        return list(self._symbols)

    def iter_symbols(self, include_repeats=True, visible_only=True):
        for symbol in self._symbols:
            if not visible_only or symbol.visible:
                yield symbol
        if not include_repeats:
            return
        for repeat in self._repeats:
            if visible_only and not repeat.visible:
                continue
            yield from repeat.iter_symbols(include_repeats, visible_only)

    def _own_bounding_rect(self) -> Rect:
        bounds = Rect.bounding(s.bounding_rect() for s in self._symbols)
        return Rect() if bounds is None else bounds

    def _bounds(self):
        """Like bounding_rect(), but None when nothing has geometry."""
        rects = [symbol.bounding_rect() for symbol in self._symbols]
        for repeat in self._repeats:
            if repeat.visible:
                rects.append(repeat._bounds())
        return Rect.bounding(r for r in rects if r is not None)

    def bounding_rect(self) -> Rect:
        """Scene bounds of own symbols and visible repeats."""
        bounds = self._bounds()
        return Rect() if bounds is None else bounds

    def own_counts(self) -> FeatureCounts:
        return self._own_counts.copy()

    def counts(self) -> FeatureCounts:
        """Own counts plus those of every expanded repeat."""
        return self._counts.copy()

    def report(self):
        """Count rows: [{"name", "count", "children": [...]}, ...]."""
        if self._ds is None:
            log.warning("No features data for report of %s", self.features_path)
            return []

        counts = self._counts if self._show_step_repeat else self._own_counts
        rows = []
        for title, kind in _REPORT_MAPPED:
            children = []
            for polarity in Polarity:
                label = "POS" if polarity == Polarity.POS else "NEG"
                for name, n in sorted(counts.table(kind, polarity).items()):
                    children.append({"name": f"{name} {label}", "count": n})
            rows.append({"name": title, "count": counts.total(kind),
                         "children": children})
        for title, kind in _REPORT_SCALAR:
            pos = counts.table(kind, Polarity.POS)
            neg = counts.table(kind, Polarity.NEG)
            rows.append({"name": title, "count": pos + neg, "children": [
                {"name": "POS", "count": pos},
                {"name": "NEG", "count": neg},
            ]})
        return rows

    def find_traces(self, max_width, threshold=TRACE_ASPECT_RATIO):
        """Trace-like surfaces no wider than max_width."""
        result = []
        for symbol in self.iter_symbols(
                include_repeats=self._show_step_repeat):
            if symbol.kind != FeatureKind.SURFACE:
                continue
            if not symbol.is_trace(threshold):
                continue
            if 0 <= symbol.get_width() <= max_width:
                result.append(symbol)
        return result
