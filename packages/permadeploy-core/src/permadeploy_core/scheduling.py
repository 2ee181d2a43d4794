"""Wave Scheduler: level the reference graph into parallel-safe publish waves."""

from __future__ import annotations

from permadeploy_core.analysis.models import DependencyGraph


def is_root_document(path: str) -> bool:
    return path == "index.html" or path.endswith("/index.html")


def compute_wave_numbers(graph: DependencyGraph) -> dict[str, int]:
    """wave(f) = 1 + max(wave(dep)) over f's dependencies, or 0 with none.

    Memoized recursion; a file reached again while it is still being
    computed (a cycle) contributes nothing to its caller.
    """
    memo: dict[str, int] = {}
    visiting: set[str] = set()

    def wave_of(path: str) -> int | None:
        if path in memo:
            return memo[path]
        if path in visiting:
            return None
        visiting.add(path)
        level = 0
        for dep in graph.dependencies_of(path):
            dep_level = wave_of(dep)
            if dep_level is not None:
                level = max(level, dep_level + 1)
        visiting.discard(path)
        memo[path] = level
        return level

    for path in sorted(graph.nodes):
        wave_of(path)
    return memo


def compute_waves(graph: DependencyGraph) -> list[list[str]]:
    """Group files by wave number; each wave is sorted for determinism."""
    numbers = compute_wave_numbers(graph)
    if not numbers:
        return []
    waves: list[list[str]] = [[] for _ in range(max(numbers.values()) + 1)]
    for path, level in numbers.items():
        waves[level].append(path)
    return [sorted(w) for w in waves]


def split_root_documents(waves: list[list[str]]) -> tuple[list[list[str]], list[str]]:
    """Pull root documents out of the waves so they can be published last.

    Waves left empty are dropped.
    """
    remaining: list[list[str]] = []
    roots: list[str] = []
    for wave in waves:
        roots.extend(p for p in wave if is_root_document(p))
        rest = [p for p in wave if not is_root_document(p)]
        if rest:
            remaining.append(rest)
    return remaining, roots
