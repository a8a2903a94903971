"""
Maps logical resource names onto the remote that owns them.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..CONFIG.remotes import RemoteRegistry
from ..MODELS.application_model import ApplicationModel
from ..MODELS.service_definition import REMOTES_EXTENSION
from ..UTILS.errors import ResolutionError
from .incus_client import ClientFactory, IncusClient, incus_client_factory


@dataclass(frozen=True)
class ResolvedResource:
    """A resource bound to the client of the remote responsible for it."""

    remote: str
    client: IncusClient
    name: str


class ResourceResolver:
    """
    Resolves resource names to ``(client, remote-side name)`` handles.

    Resolution only reads the application model and the remote registry,
    builds a fresh client per handle and caches nothing.
    """

    def __init__(
        self,
        model: ApplicationModel,
        registry: RemoteRegistry,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.model = model
        self.registry = registry
        self.client_factory = client_factory or incus_client_factory()

    def resolve(self, name: str, targets: Optional[Sequence[str]] = None) -> List[ResolvedResource]:
        """
        Resolves a logical name to one handle per responsible remote.

        A ``remote:name`` prefix selects the remote explicitly. Otherwise
        *targets* lists the remotes to use, falling back to the model's
        remote and then to the registry default.

        :param name: The logical name, optionally prefixed with ``remote:``.
        :param targets: Remotes declared on the resource itself.
        :return: At least one resolved handle.
        :raises ResolutionError: If the name is empty or a remote is unknown or malformed.
        """
        remote_names: List[str]
        if ":" in name:
            prefix, _, name = name.partition(":")
            remote_names = [prefix]
        elif targets:
            remote_names = list(targets)
        else:
            remote_names = [self.model.remote or self.registry.default_remote]

        if not name:
            raise ResolutionError(name, "empty resource name")

        resolved = []
        for remote_name in remote_names:
            if not remote_name:
                raise ResolutionError(name, "no remote specified")
            remote = self.registry.get(remote_name)
            if remote is None:
                raise ResolutionError(name, f"remote {remote_name!r} is not configured")
            if not remote.addr:
                raise ResolutionError(name, f"remote {remote_name!r} has no address")
            client = self.client_factory(remote_name, remote, self.model.project)
            resolved.append(ResolvedResource(remote=remote_name, client=client, name=name))
        return resolved

    def resolve_network(self, key: str) -> List[ResolvedResource]:
        network = self.model.networks[key]
        return self.resolve(network.name, _targets(network.extensions.get(REMOTES_EXTENSION)))

    def resolve_instance(self, service: str, instance: str) -> List[ResolvedResource]:
        svc = self.model.services[service]
        return self.resolve(instance, _targets(svc.extensions.get(REMOTES_EXTENSION)))


def _targets(value) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]
