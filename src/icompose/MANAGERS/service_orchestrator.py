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
Orchestration of a whole project: networks and instances created in
dependency order and destroyed in reverse.
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from ..CONFIG.remotes import RemoteRegistry
from ..CONFIG.settings import EndpointPolicy
from ..MODELS.application_model import ApplicationModel
from ..REMOTE.incus_client import ClientFactory
from ..REMOTE.resolver import ResourceResolver
from ..RUNNERS.dependency_graph import DependencyGraph
from ..RUNNERS.dependency_resolver import DependencyResolver, Direction
from ..UTILS.errors import AggregateError, OperationCancelled
from .instance_manager import InstanceManager
from .network_manager import NetworkManager

log = structlog.get_logger(__name__)


class ResourceState(str, Enum):
    """Where a resource is within the current batch."""

    PENDING = "pending"
    SKIPPED = "skipped"
    IN_FLIGHT = "in-flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class _Unit:
    kind: str
    name: str
    owner: str  # service name or network key
    external: bool
    run: Callable[[], AggregateError]


class ServiceOrchestrator:
    """
    Brings a project's networks and instances up and down.

    Failures on one resource never stop the batch: they are collected and
    returned once every resource has been attempted.
    """
    def __init__(
        self,
        registry: RemoteRegistry,
        client_factory: Optional[ClientFactory] = None,
        policy: EndpointPolicy = EndpointPolicy.FIRST,
        max_workers: int = 1,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Initializes the orchestrator.

        :param registry: Configured remotes.
        :param client_factory: Builds a client per remote; the incus CLI client by default.
        :param policy: Endpoint selection for resources that resolve to several remotes.
        :param max_workers: Resources dispatched concurrently within a wavefront.
        :param cancel_event: Set to stop starting new resource operations; cleared once
            the interrupted batch has returned.
        """
        self.registry = registry
        self.client_factory = client_factory
        self.policy = policy
        self.max_workers = max(1, max_workers)
        self.cancel_event = cancel_event or threading.Event()
        self.dependency_resolver = DependencyResolver()
        self.states: Dict[Tuple[str, str], ResourceState] = {}
        self._states_lock = threading.Lock()

    def _managers(self, model: ApplicationModel) -> Tuple[NetworkManager, InstanceManager]:
        resolver = ResourceResolver(model, self.registry, self.client_factory)
        return NetworkManager(resolver, self.policy), InstanceManager(resolver, self.policy)

    def apply_create(self, model: ApplicationModel, graph: DependencyGraph) -> AggregateError:
        """
        Creates every network, then every instance in dependency order.

        :param model: The finalized application model.
        :param graph: The validated dependency graph of the model's services.
        :return: Failures from the whole batch, empty on success.
        """
        networks, instances = self._managers(model)
        network_units = [
            _Unit("network", model.networks[key].name, key, model.networks[key].external,
                  lambda key=key: networks.create_network(key))
            for key in sorted(model.networks)
        ]
        instance_waves = [
            [
                _Unit("instance", name, service, model.services[service].external,
                      lambda service=service, name=name: instances.create_instance(service, name))
                for service in wave
                for name in model.instance_names(service)
            ]
            for wave in self._service_waves(graph, Direction.CREATE)
        ]
        log.info("creating project", project=model.name, networks=len(network_units),
                 instances=sum(len(wave) for wave in instance_waves))
        return self._run_batch([network_units] + instance_waves, "create")

    def apply_destroy(self, model: ApplicationModel, graph: DependencyGraph) -> AggregateError:
        """
        Deletes every instance in reverse dependency order, then every network.

        :param model: The finalized application model.
        :param graph: The validated dependency graph of the model's services.
        :return: Failures from the whole batch, empty on success.
        """
        networks, instances = self._managers(model)
        instance_waves = [
            [
                _Unit("instance", name, service, model.services[service].external,
                      lambda service=service, name=name: instances.delete_instance(service, name))
                for service in wave
                for name in model.instance_names(service)
            ]
            for wave in self._service_waves(graph, Direction.DESTROY)
        ]
        network_units = [
            _Unit("network", model.networks[key].name, key, model.networks[key].external,
                  lambda key=key: networks.delete_network(key))
            for key in sorted(model.networks)
        ]
        log.info("destroying project", project=model.name, networks=len(network_units),
                 instances=sum(len(wave) for wave in instance_waves))
        return self._run_batch(instance_waves + [network_units], "delete")

    def _service_waves(self, graph: DependencyGraph, direction: Direction) -> List[List[str]]:
        if self.max_workers == 1:
            return [[name] for name in self.dependency_resolver.resolve_order(graph, direction)]
        return self.dependency_resolver.wavefronts(graph, direction)

    def _set_state(self, unit: _Unit, state: ResourceState) -> None:
        with self._states_lock:
            self.states[(unit.kind, unit.name)] = state

    def _process(self, unit: _Unit, action: str, errors: AggregateError) -> None:
        """
        Runs one resource through Pending -> InFlight -> Succeeded/Failed.
        """
        if unit.external or self.cancel_event.is_set():
            return

        self._set_state(unit, ResourceState.IN_FLIGHT)
        log.info(f"{action[:-1]}ing {unit.kind}", kind=unit.kind, key=unit.owner, name=unit.name)
        failures = unit.run()
        if failures:
            self._set_state(unit, ResourceState.FAILED)
            for failure in failures:
                log.error(f"{action} failed", kind=unit.kind, name=unit.name, error=str(failure))
            errors.merge(failures)
        else:
            self._set_state(unit, ResourceState.SUCCEEDED)
            log.info(f"{unit.kind} {action}d", kind=unit.kind, name=unit.name)

    def _run_batch(self, waves: List[List[_Unit]], action: str) -> AggregateError:
        """
        Runs waves of units in order. Every unit of the batch starts as Pending,
        or Skipped when it is external.

        A cancellation covers the rest of this batch only: the event is cleared
        once the batch has been reported as cancelled.
        """
        errors = AggregateError()
        self.states = {}
        for wave in waves:
            for unit in wave:
                if unit.external:
                    log.debug("skipping external resource", kind=unit.kind, name=unit.name)
                    self._set_state(unit, ResourceState.SKIPPED)
                else:
                    self._set_state(unit, ResourceState.PENDING)

        try:
            if self.max_workers == 1:
                for wave in waves:
                    for unit in wave:
                        self._process(unit, action, errors)
            else:
                with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                    for wave in waves:
                        if self.cancel_event.is_set():
                            break
                        futures = [pool.submit(self._process, unit, action, errors) for unit in wave]
                        try:
                            for future in futures:
                                future.result()
                        except KeyboardInterrupt:
                            self.cancel_event.set()
                            for future in futures:
                                future.cancel()
                            raise
        except KeyboardInterrupt:
            self.cancel_event.set()
            with self._states_lock:
                for key, state in self.states.items():
                    if state == ResourceState.IN_FLIGHT:
                        self.states[key] = ResourceState.FAILED

        if self.cancel_event.is_set():
            remaining = sum(
                1 for wave in waves for unit in wave
                if self.states.get((unit.kind, unit.name)) == ResourceState.PENDING
            )
            log.warning("cancelled", action=action, remaining=remaining)
            errors.add(OperationCancelled(remaining))
            self.cancel_event.clear()
        return errors
