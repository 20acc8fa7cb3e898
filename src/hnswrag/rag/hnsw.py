"""
Hierarchical Navigable Small World graph for approximate k-NN search.

Layer 0 holds every entry; each higher layer holds a random, geometrically
thinned subset. Inserts link a node to at most ``m`` diverse neighbors per
layer (``2 * m`` on layer 0). Searches descend greedily through the upper
layers and run a best-first search bounded by ``ef`` on layer 0.

The graph is plain in-memory computation: nothing here awaits or locks.
Callers serialize mutation (see ``core.lifecycle``).
"""

import heapq
import math
import random
from collections.abc import Sequence
from typing import Any, Literal

import numpy as np

from ..core.errors import ConfigError, DimensionMismatch
from ..observability.logging import get_logger

logger = get_logger(__name__)

Metric = Literal["cosine", "euclidean"]
METRICS: tuple[str, ...] = ("cosine", "euclidean")

_INITIAL_CAPACITY = 64


class HNSWIndex:
    """
    Multi-layer proximity graph over fixed-dimension float32 vectors.

    Entry ids are dense integers assigned in insertion order. Each entry
    carries an opaque ``chunk_ref`` string that the retriever resolves to
    chunk metadata.
    """

    def __init__(
        self,
        dim: int | None = None,
        m: int = 16,
        ef_construction: int = 200,
        ef_search: int = 50,
        metric: Metric = "cosine",
        seed: int | None = None,
    ):
        if m < 2:
            raise ConfigError(f"m must be at least 2, got {m}")
        if ef_construction < 1 or ef_search < 1:
            raise ConfigError("ef_construction and ef_search must be positive")
        if metric not in METRICS:
            raise ConfigError(f"unknown distance metric {metric!r}, expected one of {METRICS}")
        if dim is not None and dim < 1:
            raise ConfigError(f"dim must be positive, got {dim}")

        self.dim = dim
        self.m = m
        self.m0 = 2 * m
        self.ef_construction = ef_construction
        self.ef_search = ef_search
        self.metric: Metric = metric
        self.seed = seed

        self.entry_point: int | None = None
        self.max_level = -1
        self._level_mult = 1.0 / math.log(m)
        self._rng = random.Random(seed)

        self._data = np.empty((0, dim or 0), dtype=np.float32)
        self._norms = np.empty(0, dtype=np.float32)
        self._count = 0
        self._levels: list[int] = []
        # _links[node][layer] -> neighbor ids
        self._links: list[list[list[int]]] = []
        self._chunk_refs: list[str] = []

    def __len__(self) -> int:
        return self._count

    def __repr__(self) -> str:
        return (
            f"HNSWIndex(size={self._count}, dim={self.dim}, m={self.m}, "
            f"metric={self.metric!r}, max_level={self.max_level})"
        )

    # -- read accessors -------------------------------------------------

    def vector(self, node: int) -> np.ndarray:
        return self._data[node].copy()

    def chunk_ref(self, node: int) -> str:
        return self._chunk_refs[node]

    def level(self, node: int) -> int:
        return self._levels[node]

    def neighbors(self, node: int, layer: int) -> list[int]:
        links = self._links[node]
        return list(links[layer]) if layer < len(links) else []

    def layer_members(self, layer: int) -> list[int]:
        return [n for n, lvl in enumerate(self._levels) if lvl >= layer]

    # -- distance helpers -----------------------------------------------

    def _coerce(self, vector: Sequence[float] | np.ndarray) -> np.ndarray:
        arr = np.asarray(vector, dtype=np.float32)
        if arr.ndim != 1 or arr.shape[0] == 0:
            raise DimensionMismatch(self.dim or 0, int(arr.size))
        if self.dim is not None and arr.shape[0] != self.dim:
            raise DimensionMismatch(self.dim, arr.shape[0])
        return arr

    def _distances(self, query: np.ndarray, query_norm: float, nodes: Sequence[int]) -> np.ndarray:
        """Distances from ``query`` to ``nodes``, in the order given."""
        rows = self._data[list(nodes)]
        if self.metric == "euclidean":
            return np.linalg.norm(rows - query, axis=1)
        denom = self._norms[list(nodes)] * query_norm
        dots = rows @ query
        sims = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)
        return 1.0 - sims

    def _distance(self, query: np.ndarray, query_norm: float, node: int) -> float:
        return float(self._distances(query, query_norm, [node])[0])

    def _pair_distance(self, a: int, b: int) -> float:
        return self._distance(self._data[a], float(self._norms[a]), b)

    # -- graph primitives -----------------------------------------------

    def _random_level(self) -> int:
        return int(-math.log(1.0 - self._rng.random()) * self._level_mult)

    def _greedy_closest(
        self, query: np.ndarray, query_norm: float, entry: int, entry_dist: float, layer: int
    ) -> tuple[float, int]:
        """Single-path descent: move to any closer neighbor until none is closer."""
        current, current_dist = entry, entry_dist
        changed = True
        while changed:
            changed = False
            neighbors = self._links[current][layer]
            if not neighbors:
                break
            dists = self._distances(query, query_norm, neighbors)
            best = int(np.argmin(dists))
            if dists[best] < current_dist:
                current, current_dist = neighbors[best], float(dists[best])
                changed = True
        return current_dist, current

    def _search_layer(
        self,
        query: np.ndarray,
        query_norm: float,
        entries: list[tuple[float, int]],
        ef: int,
        layer: int,
    ) -> list[tuple[float, int]]:
        """Best-first search bounded by ``ef``; returns (distance, id) nearest first."""
        visited = {node for _, node in entries}
        candidates = list(entries)
        heapq.heapify(candidates)
        # max-heap of the ef best seen so far
        results = [(-dist, node) for dist, node in entries]
        heapq.heapify(results)
        while len(results) > ef:
            heapq.heappop(results)

        while candidates:
            dist, node = heapq.heappop(candidates)
            if len(results) >= ef and dist > -results[0][0]:
                break

            fresh = [n for n in self._links[node][layer] if n not in visited]
            if not fresh:
                continue
            visited.update(fresh)

            for neighbor, neighbor_dist in zip(fresh, self._distances(query, query_norm, fresh)):
                neighbor_dist = float(neighbor_dist)
                if len(results) < ef or neighbor_dist < -results[0][0]:
                    heapq.heappush(candidates, (neighbor_dist, neighbor))
                    heapq.heappush(results, (-neighbor_dist, neighbor))
                    if len(results) > ef:
                        heapq.heappop(results)

        return sorted((-neg, node) for neg, node in results)

    def _select_neighbors(self, candidates: list[tuple[float, int]], limit: int) -> list[int]:
        """Diversity heuristic.

        A candidate is kept only if it is closer to the base node than to every
        neighbor kept so far. Remaining slots are filled with the nearest
        rejected candidates so sparse regions stay connected.
        """
        selected: list[tuple[float, int]] = []
        rejected: list[tuple[float, int]] = []
        for dist, node in sorted(candidates):
            if len(selected) >= limit:
                break
            if all(dist < self._pair_distance(node, kept) for _, kept in selected):
                selected.append((dist, node))
            else:
                rejected.append((dist, node))

        for item in rejected:
            if len(selected) >= limit:
                break
            selected.append(item)
        return [node for _, node in selected]

    def _append(self, vector: np.ndarray) -> int:
        node = self._count
        if node >= self._data.shape[0]:
            capacity = max(_INITIAL_CAPACITY, self._data.shape[0] * 2)
            data = np.empty((capacity, self.dim), dtype=np.float32)
            data[:node] = self._data[:node]
            norms = np.empty(capacity, dtype=np.float32)
            norms[:node] = self._norms[:node]
            self._data, self._norms = data, norms
        self._data[node] = vector
        self._norms[node] = np.linalg.norm(vector)
        self._count += 1
        return node

    # -- public mutation/query surface ----------------------------------

    def insert(self, vector: Sequence[float] | np.ndarray, chunk_ref: str = "") -> int:
        """Add one vector and return its entry id."""
        vec = self._coerce(vector)
        if self.dim is None:
            self.dim = int(vec.shape[0])
            self._data = np.empty((0, self.dim), dtype=np.float32)

        level = self._random_level()
        node = self._append(vec)
        self._levels.append(level)
        self._links.append([[] for _ in range(level + 1)])
        self._chunk_refs.append(chunk_ref)

        if self.entry_point is None:
            self.entry_point = node
            self.max_level = level
            return node

        norm = float(self._norms[node])
        entry = self.entry_point
        entry_dist = self._distance(vec, norm, entry)
        for layer in range(self.max_level, level, -1):
            entry_dist, entry = self._greedy_closest(vec, norm, entry, entry_dist, layer)

        entries = [(entry_dist, entry)]
        for layer in range(min(level, self.max_level), -1, -1):
            found = self._search_layer(vec, norm, entries, self.ef_construction, layer)
            neighbors = self._select_neighbors(found, self.m)
            self._links[node][layer] = neighbors

            cap = self.m0 if layer == 0 else self.m
            for neighbor in neighbors:
                links = self._links[neighbor][layer]
                links.append(node)
                if len(links) > cap:
                    scored = [(self._pair_distance(neighbor, other), other) for other in links]
                    self._links[neighbor][layer] = self._select_neighbors(scored, cap)
            entries = found

        if level > self.max_level:
            self.entry_point = node
            self.max_level = level
        return node

    def search(
        self, query: Sequence[float] | np.ndarray, k: int, ef: int | None = None
    ) -> list[tuple[int, float]]:
        """Return up to ``k`` ``(id, distance)`` pairs, nearest first."""
        if k <= 0 or self._count == 0:
            if self._count:
                self._coerce(query)
            return []
        q = self._coerce(query)
        norm = float(np.linalg.norm(q))
        ef = max(ef or self.ef_search, k)

        if ef >= self._count:
            return self._exhaustive(q, norm, k)

        entry = self.entry_point
        entry_dist = self._distance(q, norm, entry)
        for layer in range(self.max_level, 0, -1):
            entry_dist, entry = self._greedy_closest(q, norm, entry, entry_dist, layer)

        found = self._search_layer(q, norm, [(entry_dist, entry)], ef, 0)
        return [(node, dist) for dist, node in found[:k]]

    def _exhaustive(self, query: np.ndarray, query_norm: float, k: int) -> list[tuple[int, float]]:
        dists = self._distances(query, query_norm, range(self._count))
        order = np.argsort(dists, kind="stable")[:k]
        return [(int(node), float(dists[node])) for node in order]

    # -- persistence support --------------------------------------------

    def params(self) -> dict[str, Any]:
        return {
            "dim": self.dim,
            "m": self.m,
            "ef_construction": self.ef_construction,
            "ef_search": self.ef_search,
            "metric": self.metric,
            "seed": self.seed,
        }

    def vectors(self) -> np.ndarray:
        return self._data[: self._count].copy()

    def graph_state(self) -> dict[str, Any]:
        """Adjacency and per-node bookkeeping, JSON-serializable."""
        return {
            "entry_point": self.entry_point,
            "max_level": self.max_level,
            "levels": list(self._levels),
            "links": [[list(layer) for layer in node] for node in self._links],
            "chunk_refs": list(self._chunk_refs),
        }

    @classmethod
    def from_state(
        cls, params: dict[str, Any], graph: dict[str, Any], vectors: np.ndarray
    ) -> "HNSWIndex":
        """Rebuild an index from :meth:`params`, :meth:`graph_state` and :meth:`vectors`.

        Raises ``ValueError`` when the parts disagree with each other.
        """
        index = cls(
            dim=params["dim"],
            m=params["m"],
            ef_construction=params["ef_construction"],
            ef_search=params["ef_search"],
            metric=params["metric"],
            seed=params.get("seed"),
        )
        levels = [int(lvl) for lvl in graph["levels"]]
        links = graph["links"]
        refs = [str(ref) for ref in graph["chunk_refs"]]
        count = len(levels)

        if vectors.ndim != 2 or vectors.shape[0] != count:
            raise ValueError(f"vector rows {vectors.shape} do not match {count} graph nodes")
        if count and vectors.shape[1] != index.dim:
            raise ValueError(f"vector width {vectors.shape[1]} does not match dim {index.dim}")
        if len(links) != count or len(refs) != count:
            raise ValueError("adjacency, chunk refs and levels disagree on node count")

        for node, (level, node_links) in enumerate(zip(levels, links)):
            if level < 0 or len(node_links) != level + 1:
                raise ValueError(f"node {node} has {len(node_links)} layers but level {level}")
            for layer, neighbors in enumerate(node_links):
                for neighbor in neighbors:
                    if not 0 <= neighbor < count or levels[neighbor] < layer:
                        raise ValueError(f"node {node} links to invalid neighbor {neighbor}")

        entry_point = graph["entry_point"]
        max_level = int(graph["max_level"])
        if count == 0:
            if entry_point is not None:
                raise ValueError("empty graph cannot have an entry point")
        elif entry_point is None or not 0 <= entry_point < count:
            raise ValueError(f"entry point {entry_point} is out of range")
        elif levels[entry_point] != max_level or max(levels) != max_level:
            raise ValueError("entry point is not on the top layer")

        if count:
            index._data = np.ascontiguousarray(vectors, dtype=np.float32).copy()
            # Row by row, matching _append, so restored distances are bit-identical
            index._norms = np.array([np.linalg.norm(row) for row in index._data], dtype=np.float32)
            index._count = count
        index._levels = levels
        index._links = [[[int(n) for n in layer] for layer in node] for node in links]
        index._chunk_refs = refs
        index.entry_point = entry_point
        index.max_level = max_level
        return index
