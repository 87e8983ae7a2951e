"""
Nearest-neighbour indexes over memory embeddings.

Two implementations share the VectorIndex contract:
- ExactIndex: numpy linear scan, perfect recall.
- HNSWIndex: hierarchical navigable small-world graph, sub-linear
  queries, with an exact scan fallback for small candidate sets.

Both return (memory_id, score) pairs sorted by score descending, where
score is the metric's similarity (see similarity.py). Ties break on id
so results are reproducible across backends.
"""

import asyncio
import heapq
import logging
import math
import random
from abc import ABC, abstractmethod
from typing import Iterable, Optional, Sequence

import numpy as np

from ..errors import DimensionMismatchError, IndexIntegrityError
from .similarity import DistanceMetric, as_vector, batch_similarity, normalize

logger = logging.getLogger("memoria.memory.index")


def _rank(pairs: Iterable[tuple[str, float]], top_k: int) -> list[tuple[str, float]]:
    return sorted(pairs, key=lambda p: (-p[1], p[0]))[:top_k]


class VectorIndex(ABC):
    """Abstract interface for a similarity index keyed by memory id."""

    def __init__(
        self,
        metric: DistanceMetric = DistanceMetric.COSINE,
        dimension: Optional[int] = None,
    ):
        self.metric = DistanceMetric.parse(metric)
        self._dimension = dimension
        self._vectors: dict[str, np.ndarray] = {}

    @property
    def dimension(self) -> Optional[int]:
        """Vector length, fixed by the first vector added if not given."""
        return self._dimension

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, memory_id: str) -> bool:
        return memory_id in self._vectors

    def ids(self) -> list[str]:
        return list(self._vectors)

    def check_vector(self, vector: Sequence[float], expected: Optional[int] = None) -> np.ndarray:
        """
        Validate a vector without changing the index.

        Checked against `expected` when given, else the index dimension.
        """
        arr = as_vector(vector)
        if arr.ndim != 1 or arr.size == 0:
            raise IndexIntegrityError(f"Expected a non-empty 1-d vector, got shape {arr.shape}")
        if not np.all(np.isfinite(arr)):
            raise IndexIntegrityError("Vector contains NaN or infinite values")
        if expected is None:
            expected = self._dimension
        if expected is not None and arr.size != expected:
            raise DimensionMismatchError(expected, int(arr.size))
        return arr

    def _accept(self, vector: Sequence[float]) -> np.ndarray:
        # The first vector added fixes the dimension
        arr = self.check_vector(vector)
        if self._dimension is None:
            self._dimension = int(arr.size)
        return arr

    def _exact_scores(
        self,
        query: np.ndarray,
        candidates: Iterable[str],
    ) -> list[tuple[str, float]]:
        ids = [c for c in candidates if c in self._vectors]
        if not ids:
            return []
        matrix = np.stack([self._vectors[i] for i in ids])
        scores = batch_similarity(query, matrix, self.metric)
        return list(zip(ids, (float(s) for s in scores)))

    @abstractmethod
    def add(self, memory_id: str, vector: Sequence[float]) -> None:
        """Insert or replace the vector for a memory id."""
        pass

    @abstractmethod
    def remove(self, memory_id: str) -> bool:
        """Remove a memory id. Returns False if it was not indexed."""
        pass

    @abstractmethod
    def search(
        self,
        query: Sequence[float],
        top_k: int,
        allowed: Optional[set[str]] = None,
    ) -> list[tuple[str, float]]:
        """
        Find the top_k most similar vectors.

        Args:
            query: Query vector, same dimension as the index
            top_k: Maximum number of results
            allowed: If given, only these ids are eligible

        Returns:
            (memory_id, score) pairs, scores non-increasing
        """
        pass

    @abstractmethod
    async def rebuild(self) -> None:
        """Rebuild internal structures from the stored vectors."""
        pass

    def clear(self) -> None:
        self._vectors.clear()


class ExactIndex(VectorIndex):
    """Linear scan over a cached numpy matrix."""

    def __init__(
        self,
        metric: DistanceMetric = DistanceMetric.COSINE,
        dimension: Optional[int] = None,
    ):
        super().__init__(metric, dimension)
        self._matrix: Optional[np.ndarray] = None
        self._matrix_ids: list[str] = []

    def _invalidate(self) -> None:
        self._matrix = None
        self._matrix_ids = []

    def add(self, memory_id: str, vector: Sequence[float]) -> None:
        self._vectors[memory_id] = self._accept(vector)
        self._invalidate()

    def remove(self, memory_id: str) -> bool:
        if self._vectors.pop(memory_id, None) is None:
            return False
        self._invalidate()
        return True

    def clear(self) -> None:
        super().clear()
        self._invalidate()

    def search(
        self,
        query: Sequence[float],
        top_k: int,
        allowed: Optional[set[str]] = None,
    ) -> list[tuple[str, float]]:
        if top_k <= 0 or not self._vectors:
            return []
        q = self.check_vector(query)

        if allowed is not None:
            return _rank(self._exact_scores(q, allowed), top_k)

        if self._matrix is None:
            self._matrix_ids = list(self._vectors)
            self._matrix = np.stack([self._vectors[i] for i in self._matrix_ids])
        scores = batch_similarity(q, self._matrix, self.metric)
        return _rank(zip(self._matrix_ids, (float(s) for s in scores)), top_k)

    async def rebuild(self) -> None:
        self._invalidate()


class _HNSWGraph:
    """
    The layered proximity graph itself.

    Holds no vectors of its own; scores are computed through the owning
    index so the graph can be rebuilt off to the side and swapped in.
    """

    def __init__(self, m: int, ef_construction: int, rng: random.Random):
        self.m = m
        self.m0 = 2 * m
        self.ef_construction = ef_construction
        self.level_mult = 1.0 / math.log(max(m, 2))
        self.rng = rng
        self.layers: list[dict[str, list[str]]] = []
        self.levels: dict[str, int] = {}
        self.entry: Optional[str] = None

    def __len__(self) -> int:
        return len(self.levels)

    def _random_level(self) -> int:
        return int(-math.log(1.0 - self.rng.random()) * self.level_mult)

    def search_layer(self, score, entry_points: list[str], ef: int, layer: int) -> list[tuple[float, str]]:
        """Best-first search on one layer; returns (score, id) best first."""
        links = self.layers[layer]
        visited = set(entry_points)
        candidates = []
        results = []
        for ep in entry_points:
            s = score(ep)
            heapq.heappush(candidates, (-s, ep))
            heapq.heappush(results, (s, ep))
            if len(results) > ef:
                heapq.heappop(results)

        while candidates:
            neg, current = heapq.heappop(candidates)
            if len(results) >= ef and -neg < results[0][0]:
                break
            for neighbor in links.get(current, ()):
                if neighbor in visited:
                    continue
                visited.add(neighbor)
                s = score(neighbor)
                if len(results) < ef or s > results[0][0]:
                    heapq.heappush(candidates, (-s, neighbor))
                    heapq.heappush(results, (s, neighbor))
                    if len(results) > ef:
                        heapq.heappop(results)

        return sorted(results, reverse=True)

    def greedy_descend(self, score, top_layer: int, bottom_layer: int) -> list[str]:
        entry = [self.entry]
        for layer in range(top_layer, bottom_layer, -1):
            entry = [self.search_layer(score, entry, 1, layer)[0][1]]
        return entry

    def _prune(self, node: str, layer: int, pair_score) -> None:
        limit = self.m0 if layer == 0 else self.m
        neighbors = self.layers[layer][node]
        if len(neighbors) <= limit:
            return
        ranked = sorted(neighbors, key=lambda n: (-pair_score(node, n), n))
        self.layers[layer][node] = ranked[:limit]

    def insert(self, node: str, score_to, pair_score) -> None:
        """
        Link a node into the graph.

        score_to(node) builds a scorer against this node's vector;
        pair_score(a, b) scores two indexed nodes.
        """
        level = self._random_level()
        self.levels[node] = level
        while len(self.layers) <= level:
            self.layers.append({})
        for layer in range(level + 1):
            self.layers[layer][node] = []

        if self.entry is None:
            self.entry = node
            return

        score = score_to(node)
        top = self.levels[self.entry]
        entry = self.greedy_descend(score, top, level) if top > level else [self.entry]

        for layer in range(min(level, top), -1, -1):
            found = self.search_layer(score, entry, self.ef_construction, layer)
            limit = self.m0 if layer == 0 else self.m
            chosen = [n for _, n in found if n != node][:limit]
            self.layers[layer][node] = chosen
            for neighbor in chosen:
                self.layers[layer][neighbor].append(node)
                self._prune(neighbor, layer, pair_score)
            entry = [n for _, n in found] or entry

        if level > top:
            self.entry = node

    def delete(self, node: str, pair_score) -> None:
        level = self.levels.pop(node, None)
        if level is None:
            return
        for layer in range(level + 1):
            links = self.layers[layer]
            orphaned = links.pop(node, [])
            for neighbor in orphaned:
                if node in links.get(neighbor, ()):
                    links[neighbor].remove(node)
            # Reconnect the removed node's neighbours to each other
            for neighbor in orphaned:
                if neighbor not in links:
                    continue
                for other in orphaned:
                    if other != neighbor and other not in links[neighbor]:
                        links[neighbor].append(other)
                self._prune(neighbor, layer, pair_score)

        while self.layers and not self.layers[-1]:
            self.layers.pop()

        if self.entry == node:
            self.entry = None
            if self.layers:
                top = len(self.layers) - 1
                self.entry = min(self.layers[top])


class HNSWIndex(VectorIndex):
    """
    Approximate nearest-neighbour index (HNSW).

    Scopes with few memories are scanned exactly; the graph only pays off
    once a candidate set outgrows fallback_threshold. Filtered queries
    that the graph cannot satisfy also fall back to an exact scan, so a
    search never returns fewer results than exist.
    """

    def __init__(
        self,
        metric: DistanceMetric = DistanceMetric.COSINE,
        dimension: Optional[int] = None,
        m: int = 16,
        ef_construction: int = 200,
        ef_search: int = 50,
        fallback_threshold: int = 100,
        rebuild_yield_every: int = 64,
        seed: Optional[int] = None,
    ):
        super().__init__(metric, dimension)
        if m < 2:
            raise ValueError("m must be at least 2")
        self.m = m
        self.ef_construction = max(ef_construction, m)
        self.ef_search = max(ef_search, 1)
        self.fallback_threshold = fallback_threshold
        self.rebuild_yield_every = max(rebuild_yield_every, 1)
        self._rng = random.Random(seed)
        self._graph = self._new_graph()
        self._journal: Optional[list[tuple[str, str]]] = None
        self._rebuild_lock = asyncio.Lock()

    def _new_graph(self) -> _HNSWGraph:
        return _HNSWGraph(self.m, self.ef_construction, self._rng)

    @property
    def is_rebuilding(self) -> bool:
        return self._journal is not None

    def _prepare(self, vector: np.ndarray) -> np.ndarray:
        # Cosine over unit vectors reduces to a dot product
        if self.metric == DistanceMetric.COSINE:
            return normalize(vector)
        return vector

    def _scorer(self, query: np.ndarray, vectors: Optional[dict] = None):
        vectors = self._vectors if vectors is None else vectors
        if self.metric == DistanceMetric.L2:
            return lambda node: 1.0 / (1.0 + float(np.linalg.norm(vectors[node] - query)))
        return lambda node: float(np.dot(vectors[node], query))

    def _graph_scorers(self, vectors: dict):
        """(score_to, pair_score) callables bound to one vector map."""
        def score_to(node):
            return self._scorer(vectors[node], vectors)

        def pair_score(a, b):
            return self._scorer(vectors[a], vectors)(b)

        return score_to, pair_score

    def _score_to(self, node: str):
        return self._scorer(self._vectors[node])

    def _pair_score(self, a: str, b: str) -> float:
        return self._scorer(self._vectors[a])(b)

    def add(self, memory_id: str, vector: Sequence[float]) -> None:
        arr = self._prepare(self._accept(vector))
        if memory_id in self._vectors:
            self._graph.delete(memory_id, self._pair_score)
        self._vectors[memory_id] = arr
        self._graph.insert(memory_id, self._score_to, self._pair_score)
        if self._journal is not None:
            self._journal.append(("add", memory_id))

    def remove(self, memory_id: str) -> bool:
        if memory_id not in self._vectors:
            return False
        self._graph.delete(memory_id, self._pair_score)
        del self._vectors[memory_id]
        if self._journal is not None:
            self._journal.append(("remove", memory_id))
        return True

    def clear(self) -> None:
        super().clear()
        self._graph = self._new_graph()
        if self._journal is not None:
            self._journal.append(("clear", ""))

    def search(
        self,
        query: Sequence[float],
        top_k: int,
        allowed: Optional[set[str]] = None,
    ) -> list[tuple[str, float]]:
        if top_k <= 0 or not self._vectors:
            return []
        q = self._prepare(self.check_vector(query))

        if allowed is not None:
            candidates = [i for i in allowed if i in self._vectors]
        else:
            candidates = None
        pool = len(candidates) if candidates is not None else len(self._vectors)

        if pool <= self.fallback_threshold or self._graph.entry is None:
            return _rank(self._exact_scores(q, candidates if candidates is not None else self._vectors), top_k)

        needed = min(top_k, pool)
        # Filtered queries need a wider beam to find enough eligible nodes
        ef = max(self.ef_search, top_k)
        if candidates is not None:
            ef = max(ef, int(top_k * len(self._vectors) / max(pool, 1)))
        ef = min(ef, len(self._vectors))

        score = self._scorer(q)
        graph = self._graph
        entry = graph.greedy_descend(score, len(graph.layers) - 1, 0)
        found = graph.search_layer(score, entry, ef, 0)

        if candidates is not None:
            eligible = set(candidates)
            hits = [(node, s) for s, node in found if node in eligible]
        else:
            hits = [(node, s) for s, node in found]

        if len(hits) < needed:
            logger.debug(
                f"HNSW returned {len(hits)}/{needed} candidates, falling back to exact scan"
            )
            return _rank(self._exact_scores(q, candidates if candidates is not None else self._vectors), top_k)

        return _rank(hits, top_k)

    async def rebuild(self) -> None:
        """
        Build a fresh graph from the current vectors and swap it in.

        Yields to the event loop while building. Writes that land during
        the build are applied to the live graph and journaled, then
        replayed onto the fresh graph just before the swap. Cancelling
        leaves the live graph untouched.
        """
        async with self._rebuild_lock:
            # The fresh graph scores against its own map, which only ever
            # grows, so stale nodes can still be scored while unlinking them
            vectors = dict(self._vectors)
            score_to, pair_score = self._graph_scorers(vectors)
            fresh = self._new_graph()
            built = set()
            self._journal = []
            try:
                for i, node in enumerate(list(vectors)):
                    fresh.insert(node, score_to, pair_score)
                    built.add(node)
                    if (i + 1) % self.rebuild_yield_every == 0:
                        await asyncio.sleep(0)

                # No awaits from here until the swap
                for op, node in self._journal:
                    if op == "clear":
                        fresh = self._new_graph()
                        built.clear()
                    elif op == "add" and node in self._vectors:
                        if node in built:
                            fresh.delete(node, pair_score)
                        vectors[node] = self._vectors[node]
                        fresh.insert(node, score_to, pair_score)
                        built.add(node)

                for node in sorted(built - set(self._vectors)):
                    fresh.delete(node, pair_score)
                    built.discard(node)

                if len(fresh) != len(self._vectors):
                    raise IndexIntegrityError(
                        f"Rebuilt graph has {len(fresh)} nodes, expected {len(self._vectors)}"
                    )
                self._graph = fresh
                logger.info(f"HNSW index rebuilt with {len(fresh)} vectors")
            finally:
                self._journal = None
