"""Data models for the reference graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class FileReference:
    """One scanned file. ``content_hash`` covers the raw bytes before any rewrite."""

    original_path: str
    absolute_path: Path
    content_type: str
    dependencies: tuple[str, ...]
    content_hash: str
    size: int

    def __post_init__(self) -> None:
        if not self.original_path or self.original_path.startswith("/"):
            raise ValueError(f"original_path must be tree-relative, got '{self.original_path}'")
        if self.size < 0:
            raise ValueError(f"size must be non-negative, got {self.size}")


@dataclass
class DependencyNode:
    """A FileReference plus the set of files that depend on it."""

    file: FileReference
    dependents: set[str] = field(default_factory=set)

    @property
    def path(self) -> str:
        return self.file.original_path


class DependencyGraph:
    """Arena of nodes keyed by path.

    Forward edges live on each node's FileReference; the reverse index
    (``dependents``) is filled in a separate pass once every node exists.
    """

    def __init__(self, files: list[FileReference] | None = None) -> None:
        self.nodes: dict[str, DependencyNode] = {}
        for f in files or []:
            self.add(f)
        if files:
            self.build_reverse_index()

    def add(self, file: FileReference) -> None:
        if file.original_path in self.nodes:
            raise ValueError(f"Duplicate node '{file.original_path}'")
        self.nodes[file.original_path] = DependencyNode(file=file)

    def build_reverse_index(self) -> None:
        for node in self.nodes.values():
            node.dependents.clear()
        for node in self.nodes.values():
            for dep in node.file.dependencies:
                target = self.nodes.get(dep)
                if target is not None:
                    target.dependents.add(node.path)

    def __contains__(self, path: object) -> bool:
        return path in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def __getitem__(self, path: str) -> DependencyNode:
        return self.nodes[path]

    def get(self, path: str) -> DependencyNode | None:
        return self.nodes.get(path)

    def dependencies_of(self, path: str) -> tuple[str, ...]:
        return tuple(d for d in self.nodes[path].file.dependencies if d in self.nodes)

    def ancestors_of(self, path: str) -> set[str]:
        """Every file that transitively depends on *path*."""
        seen: set[str] = set()
        stack = [path]
        while stack:
            current = stack.pop()
            for parent in self.nodes[current].dependents:
                if parent not in seen:
                    seen.add(parent)
                    stack.append(parent)
        seen.discard(path)
        return seen

    def topological_order(self) -> list[str]:
        """Dependencies before dependents. Back edges of cycles are ignored."""
        order: list[str] = []
        done: set[str] = set()
        visiting: set[str] = set()

        def visit(path: str) -> None:
            if path in done or path in visiting:
                return
            visiting.add(path)
            for dep in self.dependencies_of(path):
                visit(dep)
            visiting.discard(path)
            done.add(path)
            order.append(path)

        for path in sorted(self.nodes):
            visit(path)
        return order


@dataclass
class AnalysisResult:
    files: list[FileReference]
    graph: DependencyGraph
    order: list[str]
    skipped: list[str] = field(default_factory=list)

    def get(self, path: str) -> FileReference | None:
        node = self.graph.get(path)
        return node.file if node else None
