"""
Instance management: one Incus instance per service replica.
"""
from ..REMOTE.incus_client import InstanceSpec
from ..UTILS.errors import AggregateError
from .base_manager import ResourceManager


class InstanceManager(ResourceManager):
    """
    Creates and deletes the instances backing each service.
    """
    kind = "instance"

    def instance_spec(self, service: str, name: str) -> InstanceSpec:
        """
        Builds the spec for one replica of a service.

        :param service: The service name.
        :param name: The remote-side instance name.
        """
        svc = self.model.services[service]
        return InstanceSpec(
            name=name,
            image=svc.image,
            networks=self.model.network_names(service),
            environment=dict(svc.environment),
        )

    def create_instance(self, service: str, instance: str) -> AggregateError:
        return self._dispatch(
            "create",
            lambda: self.resolver.resolve_instance(service, instance),
            lambda handle: handle.client.create_instance(self.instance_spec(service, handle.name)),
        )

    def delete_instance(self, service: str, instance: str) -> AggregateError:
        return self._dispatch(
            "delete",
            lambda: self.resolver.resolve_instance(service, instance),
            lambda handle: handle.client.delete_instance(handle.name),
        )
