"""Shared pytest fixtures for incus-compose tests."""
from typing import Dict, List, Optional

import pytest
from click.testing import CliRunner

from icompose.CONFIG.remotes import Remote, RemoteRegistry
from icompose.MODELS.application_model import ApplicationModel, NetworkDefaults
from icompose.MODELS.service_definition import NetworkDefinition, ServiceDefinition
from icompose.REMOTE.incus_client import RemoteError


class FakeClient:
    """Records every call instead of talking to a remote."""

    def __init__(self, remote: str, recorder: "Recorder"):
        self.remote = remote
        self.recorder = recorder

    def _record(self, verb, name, spec=None):
        self.recorder.calls.append((verb, self.remote, name))
        if spec is not None:
            self.recorder.specs[(verb, self.remote, name)] = spec
        if name in self.recorder.fail:
            raise RemoteError(["incus", verb, name], 1, f"{name} exploded")

    def create_network(self, spec):
        self._record("create-network", spec.name, spec)

    def delete_network(self, name):
        self._record("delete-network", name)

    def create_instance(self, spec):
        self._record("create-instance", spec.name, spec)

    def delete_instance(self, name):
        self._record("delete-instance", name)


class Recorder:
    def __init__(self):
        self.calls: List[tuple] = []
        self.specs: Dict[tuple, object] = {}
        self.fail = set()

    def factory(self, name: str, remote: Remote, project: Optional[str]) -> FakeClient:
        return FakeClient(name, self)

    def names(self, verb: str) -> List[str]:
        return [name for v, _, name in self.calls if v == verb]


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def registry() -> RemoteRegistry:
    """Local remote plus two cluster members."""
    return RemoteRegistry(
        default_remote="local",
        remotes={
            "local": Remote(addr="unix://"),
            "node1": Remote(addr="https://10.0.0.1:8443"),
            "node2": Remote(addr="https://10.0.0.2:8443"),
            "broken": Remote(addr=""),
        },
    )


@pytest.fixture
def make_model():
    """Builds an ApplicationModel from a compact description."""
    def build(
        deps: Optional[Dict[str, List[str]]] = None,
        networks: Optional[Dict[str, dict]] = None,
        defaults: Optional[NetworkDefaults] = None,
        name: str = "demo",
        remote: Optional[str] = None,
        services: Optional[Dict[str, dict]] = None,
    ) -> ApplicationModel:
        svc_defs = {}
        for svc, depends_on in (deps or {}).items():
            extra = (services or {}).get(svc, {})
            svc_defs[svc] = ServiceDefinition(name=svc, image="images:debian/12", depends_on=depends_on, **extra)
        net_defs = {}
        for key, spec in (networks or {}).items():
            spec = dict(spec)
            net_defs[key] = NetworkDefinition(key=key, name=spec.pop("name", f"{name}-{key}"), **spec)
        return ApplicationModel(
            name=name,
            services=svc_defs,
            networks=net_defs,
            network_defaults=defaults or NetworkDefaults(),
            remote=remote,
        )
    return build


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()
