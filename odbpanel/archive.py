"""Access to the files of an ODB++ job.

The job may be an extracted directory or a .tgz/.tar.gz/.zip archive.
Logical paths such as "steps/pcb/layers/top/features" are resolved
case-insensitively; files stored compressed as "<name>.z" or "<name>.Z"
are decompressed next to the archive copy on first access.
"""

import gzip
import logging
import shutil
import subprocess
import tarfile
import tempfile
import zipfile
from pathlib import Path
from typing import Optional

from .errors import NotFoundError

log = logging.getLogger(__name__)


class ArchiveLoader:
    def __init__(self, path):
        self.path = Path(path)
        self.root = None  # Path to the job root (parent of matrix/)
        self._temp_dir = None
        try:
            self._open_archive(self.path)
            self._find_root()
        except Exception:
            self.close()
            raise
        log.info("ODB++ root: %s", self.root)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _open_archive(self, path: Path):
        if path.is_dir():
            self.root = path
            return

        self._temp_dir = tempfile.mkdtemp(prefix="odbpanel_")
        dest = Path(self._temp_dir)

        if path.suffixes[-2:] == [".tar", ".gz"] or path.suffix == ".tgz":
            with tarfile.open(path, "r:gz") as tf:
                tf.extractall(dest, filter="data")
        elif path.suffix == ".zip":
            with zipfile.ZipFile(path, "r") as zf:
                zf.extractall(dest)
        else:
            raise ValueError(f"Unsupported archive format: {path}")

        self.root = dest

    def close(self):
        if self._temp_dir:
            shutil.rmtree(self._temp_dir, ignore_errors=True)
            self._temp_dir = None

    def _find_root(self):
        """Locate the job root by finding the matrix/matrix file."""
        # Might be directly in root, or one level down
        for candidate in [self.root] + sorted(self.root.iterdir()):
            if candidate.is_dir() and self._has_matrix(candidate):
                self.root = candidate
                return
        # Try two levels deep
        for child in sorted(self.root.iterdir()):
            if child.is_dir():
                for grandchild in sorted(child.iterdir()):
                    if grandchild.is_dir() and self._has_matrix(grandchild):
                        self.root = grandchild
                        return
        raise FileNotFoundError(
            f"Cannot find matrix/matrix in {self.root}. Not a valid ODB++ job."
        )

    def _has_matrix(self, directory: Path) -> bool:
        matrix_dir = _find_ci(directory, "matrix")
        return bool(matrix_dir and matrix_dir.is_dir()
                    and (_find_ci(matrix_dir, "matrix")
                         or _find_ci(matrix_dir, "matrix.z")))

    def _walk(self, parts) -> Optional[Path]:
        current = self.root
        for part in parts:
            found = _find_ci(current, part)
            if not found:
                return None
            current = found
        return current

    def resolve(self, logical: str) -> Path:
        """Absolute path of a logical job path, raising NotFoundError."""
        parts = [p for p in str(logical).replace("\\", "/").split("/") if p]
        if not parts:
            return self.root

        found = self._walk(parts)
        if found is not None:
            return found

        parent = self._walk(parts[:-1])
        if parent is not None:
            compressed = _find_ci(parent, parts[-1] + ".z")
            if compressed is not None and compressed.is_file():
                return _decompress(compressed)

        raise NotFoundError(f"{logical} not found in {self.root}")

    def list_dir(self, logical: str = "") -> list:
        """Entry names of a job directory, sorted; [] if it does not exist."""
        parts = [p for p in str(logical).split("/") if p]
        directory = self._walk(parts)
        if directory is None or not directory.is_dir():
            return []
        return sorted(entry.name for entry in directory.iterdir())


def _find_ci(parent: Path, name: str) -> Optional[Path]:
    """Case-insensitive directory/file lookup."""
    target = name.lower()
    if not parent.exists():
        return None
    for entry in parent.iterdir():
        if entry.name.lower() == target:
            return entry
    return None


def _decompress(compressed: Path) -> Path:
    """Decompress <name>.z next to itself and return the plain path."""
    target = compressed.with_name(compressed.name[:-2])
    log.debug("Decompressing %s", compressed)
    try:
        with gzip.open(compressed, "rb") as src, open(target, "wb") as dst:
            shutil.copyfileobj(src, dst)
        return target
    except (OSError, EOFError) as e:
        # Python's gzip module cannot read LZW (compress) data; gzip -d can
        log.debug("gzip module failed on %s (%s), trying gzip -dc",
                  compressed, e)

    try:
        result = subprocess.run(["gzip", "-dc", str(compressed)],
                                capture_output=True, check=True)
    except (OSError, subprocess.CalledProcessError) as e:
        target.unlink(missing_ok=True)
        raise NotFoundError(f"cannot decompress {compressed}: {e}") from e
    target.write_bytes(result.stdout)
    return target
