"""
Dependency resolution for services to determine creation and destruction order.
"""
from enum import Enum
from typing import Dict, List

from .dependency_graph import DependencyGraph


class Direction(str, Enum):
    """
    Which way a batch walks the dependency graph.
    """
    CREATE = "create"
    DESTROY = "destroy"


class DependencyResolver:
    """
    Resolves the creation and destruction order of services from their
    dependency graph.
    """
    def resolve_order(self, graph: DependencyGraph, direction: Direction = Direction.CREATE) -> List[str]:
        """
        Determines the order to process services using a topological sort.

        Vertices and their dependencies are visited in name order, so the
        result is identical across runs for the same graph.

        :param graph: The validated dependency graph.
        :param direction: CREATE puts dependencies first, DESTROY is its exact reverse.
        :return: Service names in processing order.
        """
        ordered = []
        visited = set()

        def visit(name):
            if name in visited:
                return
            visited.add(name)
            for dep in graph.dependencies(name):
                visit(dep)
            ordered.append(name)

        for name in graph.vertices:
            visit(name)

        if direction == Direction.DESTROY:
            ordered.reverse()
        return ordered

    def wavefronts(self, graph: DependencyGraph, direction: Direction = Direction.CREATE) -> List[List[str]]:
        """
        Groups services into waves that can be processed concurrently.

        Every service sits one wave after its deepest dependency, so a wave
        only starts once everything it relies on has been handled.

        :param graph: The validated dependency graph.
        :param direction: CREATE yields dependencies first, DESTROY the reversed waves.
        :return: Waves of service names, each sorted by name.
        """
        levels: Dict[str, int] = {}
        for name in self.resolve_order(graph, Direction.CREATE):
            deps = graph.dependencies(name)
            levels[name] = 1 + max((levels[d] for d in deps), default=-1)

        waves: List[List[str]] = [[] for _ in range(max(levels.values(), default=-1) + 1)]
        for name in sorted(levels):
            waves[levels[name]].append(name)

        if direction == Direction.DESTROY:
            waves.reverse()
        return waves
