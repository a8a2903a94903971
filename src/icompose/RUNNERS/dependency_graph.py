# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Dependency graph over the services of a project.
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping

from ..MODELS.service_definition import ServiceDefinition
from ..UTILS.errors import CycleError, UnknownDependencyError

# Visit states for the depth-first cycle check
_UNVISITED, _IN_PROGRESS, _DONE = 0, 1, 2


@dataclass(frozen=True)
class DependencyGraph:
    """
    Directed acyclic graph with an edge from each service to every service
    it depends on.

    Instances only come out of :meth:`build`, which rejects unknown
    dependencies and cycles, so a graph in hand is always valid.
    """
    edges: Mapping[str, FrozenSet[str]]

    @classmethod
    def build(cls, services: Mapping[str, ServiceDefinition]) -> "DependencyGraph":
        """
        Builds the graph for a set of services.

        :param services: Service definitions keyed by name.
        :return: The validated graph.
        :raises UnknownDependencyError: If a service depends on an undeclared service.
        :raises CycleError: If the dependencies contain a cycle.
        """
        edges: Dict[str, FrozenSet[str]] = {}
        for name in sorted(services):
            deps = services[name].depends_on
            for dep in sorted(deps):
                if dep not in services:
                    raise UnknownDependencyError(name, dep)
            edges[name] = frozenset(deps)

        _check_acyclic(edges)
        return cls(edges=MappingProxyType(edges))

    @property
    def vertices(self) -> List[str]:
        return sorted(self.edges)

    def dependencies(self, name: str) -> List[str]:
        """
        Returns the direct dependencies of a service, sorted by name.
        """
        return sorted(self.edges[name])

    def dependents(self, name: str) -> List[str]:
        """
        Returns the services that depend directly on a service, sorted by name.
        """
        return sorted(v for v, deps in self.edges.items() if name in deps)

    def __contains__(self, name: object) -> bool:
        return name in self.edges

    def __len__(self) -> int:
        return len(self.edges)


def _check_acyclic(edges: Mapping[str, FrozenSet[str]]) -> None:
    state = {name: _UNVISITED for name in edges}
    path: List[str] = []

    def visit(name: str) -> None:
        if state[name] == _DONE:
            return
        if state[name] == _IN_PROGRESS:
            start = path.index(name)
            raise CycleError(path[start:] + [name])
        state[name] = _IN_PROGRESS
        path.append(name)
        for dep in sorted(edges[name]):
            visit(dep)
        path.pop()
        state[name] = _DONE

    for name in sorted(edges):
        visit(name)
