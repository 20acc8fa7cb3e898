"""
On-disk persistence of one index as a self-validating bundle directory.

Layout::

    <bundle>/
        meta.json     format version, HNSW parameters, entry point, checksums
        graph.json    per-node levels, per-layer adjacency, chunk refs
        vectors.npy   float32 matrix, one row per entry
        chunks.json   chunk metadata in entry order

A bundle is written into a temporary sibling directory and moved into
place with ``os.replace``, so a loader sees either a complete bundle or
nothing at all. A retired bundle left behind by a swap that stopped between its
two renames is moved back before the next load, save or delete.
"""

import contextlib
import hashlib
import json
import os
import shutil
import tempfile
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

from ..core.errors import CorruptIndex, IndexIOError, NotFound
from ..observability.logging import get_logger
from ..rag.chunking import Chunk
from ..rag.hnsw import HNSWIndex

log = get_logger("hnswrag.storage")

FORMAT_VERSION = 1

META_FILE = "meta.json"
GRAPH_FILE = "graph.json"
VECTORS_FILE = "vectors.npy"
CHUNKS_FILE = "chunks.json"
DATA_FILES = (GRAPH_FILE, VECTORS_FILE, CHUNKS_FILE)

_TMP_SUFFIX = ".tmp"


@dataclass
class BundleRef:
    """Summary of a bundle that was just written."""

    path: Path
    entries: int
    dim: int | None
    size_bytes: int
    checksums: dict[str, str] = field(default_factory=dict)


@dataclass
class LoadedBundle:
    """An index reconstructed from disk together with its chunk metadata."""

    path: Path
    index: HNSWIndex
    chunks: dict[str, Chunk]
    meta: dict[str, Any]


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for block in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(block)
    return digest.hexdigest()


def _fsync_directory(path: Path) -> None:
    # Directory fsync is not supported everywhere (e.g. Windows)
    with contextlib.suppress(OSError):
        fd = os.open(str(path), os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)


def _write_json(path: Path, obj: Any) -> None:
    with path.open("w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False, separators=(",", ":"))
        f.flush()
        os.fsync(f.fileno())


def _read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


class BundleStore:
    """Save, load and delete the bundle at one fixed path."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def exists(self) -> bool:
        return (self.path / META_FILE).is_file()

    # -- save -------------------------------------------------------------

    def save(self, index: HNSWIndex, chunks: Sequence[Chunk]) -> BundleRef:
        """Persist ``index`` and the chunks its entries refer to.

        ``chunks`` must contain one chunk per entry, keyed by the entry's
        ``chunk_ref``.
        """
        by_id = {chunk.id: chunk for chunk in chunks}
        graph = index.graph_state()
        try:
            ordered = [by_id[ref].to_dict() for ref in graph["chunk_refs"]]
        except KeyError as e:
            raise IndexIOError(f"no chunk metadata for entry ref {e.args[0]!r}") from e

        parent = self.path.parent
        tmp: Path | None = None
        try:
            parent.mkdir(parents=True, exist_ok=True)
            self._recover_retired()
            self._sweep_stale()
            tmp = Path(
                tempfile.mkdtemp(prefix=f".{self.path.name}.", suffix=_TMP_SUFFIX, dir=parent)
            )

            vectors = index.vectors()
            if vectors.shape[0] == 0:
                vectors = np.empty((0, index.dim or 0), dtype=np.float32)
            with (tmp / VECTORS_FILE).open("wb") as f:
                np.save(f, vectors, allow_pickle=False)
                f.flush()
                os.fsync(f.fileno())
            _write_json(tmp / GRAPH_FILE, graph)
            _write_json(tmp / CHUNKS_FILE, ordered)

            checksums = {name: _sha256(tmp / name) for name in DATA_FILES}
            meta = {
                "format_version": FORMAT_VERSION,
                **index.params(),
                "entry_point": index.entry_point,
                "max_level": index.max_level,
                "count": len(index),
                "checksums": checksums,
            }
            _write_json(tmp / META_FILE, meta)
            _fsync_directory(tmp)

            size = sum((tmp / name).stat().st_size for name in (META_FILE, *DATA_FILES))
            self._swap_in(tmp)
            tmp = None
        except OSError as e:
            log.error("Failed to write bundle", path=str(self.path), error=str(e))
            raise IndexIOError(f"failed to write bundle at {self.path}: {e}") from e
        finally:
            if tmp is not None:
                shutil.rmtree(tmp, ignore_errors=True)

        log.info("Saved bundle", path=str(self.path), entries=len(index), size=size)
        return BundleRef(
            path=self.path, entries=len(index), dim=index.dim, size_bytes=size, checksums=checksums
        )

    def _swap_in(self, tmp: Path) -> None:
        """Move a finished temporary bundle into place."""
        retired: Path | None = None
        if self.path.exists():
            retired = self.path.with_name(f".{self.path.name}.{uuid.uuid4().hex[:8]}.old")
            os.replace(self.path, retired)
        os.replace(tmp, self.path)
        _fsync_directory(self.path.parent)
        if retired is not None:
            shutil.rmtree(retired, ignore_errors=True)

    def _recover_retired(self) -> None:
        """Put a retired bundle back when a swap stopped between its two renames."""
        if self.path.exists():
            return
        retired = [
            p
            for p in self.path.parent.glob(f".{self.path.name}.*.old")
            if (p / META_FILE).is_file()
        ]
        if not retired:
            return
        latest = max(retired, key=lambda p: p.stat().st_mtime)
        os.replace(latest, self.path)
        log.warning("Restored retired bundle", path=str(self.path), retired=latest.name)

    def _sweep_stale(self) -> None:
        """Remove temporary or retired siblings left by an interrupted save."""
        for leftover in self.path.parent.glob(f".{self.path.name}.*"):
            if leftover.is_dir() and leftover.name.endswith((_TMP_SUFFIX, ".old")):
                shutil.rmtree(leftover, ignore_errors=True)

    # -- load -------------------------------------------------------------

    def load(self) -> LoadedBundle:
        """Reconstruct the persisted index.

        Raises:
            NotFound: nothing is persisted at the path.
            CorruptIndex: the bundle is incomplete, truncated or inconsistent.
            IndexIOError: any other filesystem failure.
        """
        try:
            self._recover_retired()
        except OSError as e:
            raise IndexIOError(f"failed to recover bundle at {self.path}: {e}") from e

        if not self.path.exists():
            raise NotFound(f"no index bundle at {self.path}", path=str(self.path))
        if not self.path.is_dir():
            raise CorruptIndex(f"{self.path} is not a bundle directory", path=str(self.path))

        try:
            return self._load_checked()
        except (CorruptIndex, IndexIOError):
            raise
        except FileNotFoundError as e:
            raise CorruptIndex(f"bundle file missing: {e.filename}", path=str(self.path)) from e
        except (ValueError, KeyError, TypeError, IndexError, AttributeError, EOFError) as e:
            raise CorruptIndex(f"bundle at {self.path} is unreadable: {e}", path=str(self.path)) from e
        except OSError as e:
            raise IndexIOError(f"failed to read bundle at {self.path}: {e}") from e

    def _load_checked(self) -> LoadedBundle:
        for name in (META_FILE, *DATA_FILES):
            if not (self.path / name).is_file():
                raise CorruptIndex(f"bundle file missing: {name}", path=str(self.path))

        meta = _read_json(self.path / META_FILE)
        if meta.get("format_version") != FORMAT_VERSION:
            raise CorruptIndex(
                f"unsupported bundle format {meta.get('format_version')!r}", path=str(self.path)
            )

        checksums = meta["checksums"]
        for name in DATA_FILES:
            if _sha256(self.path / name) != checksums.get(name):
                raise CorruptIndex(f"checksum mismatch for {name}", path=str(self.path))

        graph = _read_json(self.path / GRAPH_FILE)
        vectors = np.load(self.path / VECTORS_FILE, allow_pickle=False)
        chunk_rows = _read_json(self.path / CHUNKS_FILE)

        index = HNSWIndex.from_state(meta, graph, vectors)

        if meta["count"] != len(index) or meta["entry_point"] != index.entry_point:
            raise CorruptIndex("header disagrees with graph", path=str(self.path))
        if len(chunk_rows) != len(index):
            raise CorruptIndex("chunk metadata count disagrees with graph", path=str(self.path))

        chunks: dict[str, Chunk] = {}
        for node, row in enumerate(chunk_rows):
            chunk = Chunk.from_dict(row)
            if chunk.id != index.chunk_ref(node):
                raise CorruptIndex(f"entry {node} refers to unknown chunk", path=str(self.path))
            chunks[chunk.id] = chunk

        log.info("Loaded bundle", path=str(self.path), entries=len(index), dim=index.dim)
        return LoadedBundle(path=self.path, index=index, chunks=chunks, meta=meta)

    # -- delete -----------------------------------------------------------

    def delete(self) -> bool:
        """Remove the bundle tree. Returns False when there was nothing to remove."""
        try:
            self._recover_retired()
            if not self.path.exists():
                log.debug("No bundle to delete", path=str(self.path))
                return False
            if self.path.is_dir():
                shutil.rmtree(self.path)
            else:
                self.path.unlink()
        except OSError as e:
            raise IndexIOError(f"failed to delete bundle at {self.path}: {e}") from e
        log.info("Deleted bundle", path=str(self.path))
        return True
