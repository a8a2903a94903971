"""
Network management: creating and deleting the networks a project declares.
"""
from typing import Tuple

from ..MODELS.service_definition import TYPE_EXTENSION, UPLINK_EXTENSION
from ..REMOTE.incus_client import NetworkSpec
from ..UTILS.errors import AggregateError
from .base_manager import ResourceManager

OVN = "ovn"


class NetworkManager(ResourceManager):
    """
    Creates and deletes project networks on their remotes.
    """
    kind = "network"

    def effective_type(self, key: str) -> Tuple[str, str]:
        """
        Resolves the type and uplink for a network.

        ``x-incus-type`` and ``x-incus-uplink`` on the network win over the
        run-level defaults.

        :param key: The network key in the compose file.
        :return: (type, uplink)
        """
        network = self.model.networks[key]
        defaults = self.model.network_defaults
        nettype = network.extension(TYPE_EXTENSION) or defaults.type
        uplink = network.extension(UPLINK_EXTENSION) or defaults.uplink
        return nettype, uplink

    def network_spec(self, key: str, name: str) -> NetworkSpec:
        nettype, uplink = self.effective_type(key)
        config = {}
        if nettype == OVN and uplink:
            config["network"] = uplink
        return NetworkSpec(name=name, type=nettype, config=config)

    def create_network(self, key: str) -> AggregateError:
        return self._dispatch(
            "create",
            lambda: self.resolver.resolve_network(key),
            lambda handle: handle.client.create_network(self.network_spec(key, handle.name)),
        )

    def delete_network(self, key: str) -> AggregateError:
        return self._dispatch(
            "delete",
            lambda: self.resolver.resolve_network(key),
            lambda handle: handle.client.delete_network(handle.name),
        )
