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
Error types raised while loading a project and driving the remote.

Graph errors are fatal and surface before any remote call. Resolution and
remote operation errors are collected per resource into an AggregateError.
"""
import threading
from typing import Iterable, Iterator, List, Optional


class ComposeError(Exception):
    """Base class for every error raised by incus-compose."""


class ManifestError(ComposeError):
    """The compose file could not be read or is structurally invalid."""


class InterpolationError(ComposeError):
    """A ${VAR:?message} reference was unset or empty."""


class UnknownDependencyError(ComposeError):
    """A service depends on a service that is not declared."""

    def __init__(self, service: str, missing: str):
        self.service = service
        self.missing = missing
        super().__init__(f"service {service!r} depends on undefined service {missing!r}")


class CycleError(ComposeError):
    """The depends_on relationships do not form an acyclic graph."""

    def __init__(self, cycle: Optional[List[str]] = None):
        self.cycle = list(cycle or [])
        if self.cycle:
            message = "dependency cycle detected: " + " -> ".join(self.cycle)
        else:
            message = "dependency cycle detected"
        super().__init__(message)


class ResolutionError(ComposeError):
    """A logical resource name could not be mapped to a remote endpoint."""

    def __init__(self, name: str, reason: str, kind: Optional[str] = None):
        self.name = name
        self.reason = reason
        self.kind = kind
        super().__init__(f"cannot resolve {name!r}: {reason}")


class RemoteOperationError(ComposeError):
    """A create or delete call against the remote failed."""

    def __init__(self, kind: str, name: str, action: str, cause: BaseException):
        self.kind = kind
        self.name = name
        self.action = action
        self.cause = cause
        super().__init__(f"{action} {kind} {name!r} failed: {cause}")


class OperationCancelled(ComposeError):
    """The run was interrupted before every resource was processed."""

    def __init__(self, remaining: int):
        self.remaining = remaining
        super().__init__(f"cancelled with {remaining} resource(s) not processed")


class AggregateError(ComposeError):
    """
    Collects independent failures from one batch.

    An empty accumulator is falsy and means the batch succeeded. Appends are
    lock-protected so worker threads can report into the same instance.
    """

    def __init__(self, errors: Optional[Iterable[BaseException]] = None):
        super().__init__()
        self._lock = threading.Lock()
        self._errors: List[BaseException] = list(errors or [])

    def add(self, error: BaseException) -> None:
        with self._lock:
            self._errors.append(error)

    def merge(self, other: "AggregateError") -> "AggregateError":
        """
        Appends every error held by another accumulator.

        :param other: The accumulator to fold into this one.
        :return: This accumulator, for chaining.
        """
        for error in other.errors:
            self.add(error)
        return self

    @property
    def errors(self) -> List[BaseException]:
        with self._lock:
            return list(self._errors)

    def __bool__(self) -> bool:
        return len(self) > 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._errors)

    def __iter__(self) -> Iterator[BaseException]:
        return iter(self.errors)

    def __str__(self) -> str:
        errors = self.errors
        if not errors:
            return "no errors"
        return "\n".join(str(e) for e in errors)
