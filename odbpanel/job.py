"""ODB++ job session.

An OdbJob opens the job (directory or archive), owns the parse cache for
its lifetime and is the entry point for building LayerFeatures:

    with OdbJob("panel.tgz") as job:
        top = job.layer_features("panel", "top", step_repeat=True)
        print(top.counts().total(FeatureKind.PAD))
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .archive import ArchiveLoader
from .cache import ParseCache
from .layer_features import LayerFeatures

log = logging.getLogger(__name__)

FEATURES_TEMPLATE = "steps/{{step}}/layers/{layer}/features"
PROFILE_TEMPLATE = "steps/{step}/profile"


@dataclass
class LayerInfo:
    name: str
    type: str = ""
    polarity: str = "positive"
    context: str = ""
    row: int = 0


class OdbJob:
    def __init__(self, path, cache: Optional[ParseCache] = None):
        self.path = Path(path)
        self.loader = ArchiveLoader(self.path)
        self.cache = cache if cache is not None else ParseCache()
        self._matrix = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        self.cache.clear()
        self.loader.close()

    @property
    def root(self) -> Path:
        return self.loader.root

    def resolve(self, logical: str) -> Path:
        return self.loader.resolve(logical)

    def matrix(self):
        """Parsed matrix/matrix (StructuredTextDataStore)."""
        if self._matrix is None:
            self._matrix = self.cache.structured_text(
                self.resolve("matrix/matrix"))
        return self._matrix

    def steps(self) -> list:
        """Step names in matrix order, lower case."""
        names = []
        for block in self.matrix().get_blocks_by_key("STEP"):
            name = block.find("NAME")
            if name:
                names.append(name.lower())
        if not names:
            # Some exporters leave the matrix without STEP blocks
            names = [n.lower() for n in self.loader.list_dir("steps")]
        return names

    def layers(self) -> list:
        """LayerInfo for every matrix LAYER block, in matrix order."""
        layers = []
        for block in self.matrix().get_blocks_by_key("LAYER"):
            name = block.find("NAME")
            if not name:
                log.warning("Matrix LAYER block at line %d has no NAME",
                            block.line_no)
                continue
            row = block.find("ROW", "0")
            layers.append(LayerInfo(
                name=name.lower(),
                type=block.find("TYPE", "").lower(),
                polarity=block.find("POLARITY", "positive").lower(),
                context=block.find("CONTEXT", "").lower(),
                row=int(row) if row.isdigit() else 0,
            ))
        return layers

    def default_step(self) -> Optional[str]:
        steps = self.steps()
        return steps[0] if steps else None

    def layer_features(self, step: str, layer: str,
                       step_repeat: bool = False) -> LayerFeatures:
        template = FEATURES_TEMPLATE.format(layer=layer.lower())
        return LayerFeatures(self, step, template, step_repeat=step_repeat)

    def profile(self, step: str, step_repeat: bool = False) -> LayerFeatures:
        return LayerFeatures(self, step, PROFILE_TEMPLATE,
                             step_repeat=step_repeat)
