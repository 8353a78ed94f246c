"""Disjoint-set forest used for Kruskal's spanning tree."""

from typing import List


class UnionFind:
    """Union-find with path compression."""

    def __init__(self, n: int):
        self.parent: List[int] = list(range(n))

    def find(self, i: int) -> int:
        root = i
        while self.parent[root] != root:
            root = self.parent[root]
        # Compress the path
        while self.parent[i] != root:
            self.parent[i], i = root, self.parent[i]
        return root

    def union(self, i: int, j: int) -> bool:
        """Merge the sets holding ``i`` and ``j``; False if already joined."""
        root_i = self.find(i)
        root_j = self.find(j)
        if root_i == root_j:
            return False
        self.parent[root_i] = root_j
        return True

    def connected(self, i: int, j: int) -> bool:
        return self.find(i) == self.find(j)

    def count_sets(self) -> int:
        return len({self.find(i) for i in range(len(self.parent))})
