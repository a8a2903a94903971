"""
Unit tests for creating and destroying whole projects.
"""
import threading

import pytest
from icompose.MANAGERS.service_orchestrator import ResourceState, ServiceOrchestrator
from icompose.MODELS.application_model import NetworkDefaults
from icompose.RUNNERS.dependency_graph import DependencyGraph
from icompose.UTILS.errors import OperationCancelled, RemoteOperationError, UnknownDependencyError


@pytest.fixture
def orchestrator(registry, recorder):
    return ServiceOrchestrator(registry, client_factory=recorder.factory)


@pytest.fixture
def stack(make_model):
    model = make_model(
        deps={"db": [], "api": ["db"], "web": ["api"]},
        networks={"default": {}, "lan": {"external": True, "name": "lan"}},
    )
    return model, DependencyGraph.build(model.services)


def test_create_order(orchestrator, recorder, stack):
    errors = orchestrator.apply_create(*stack)
    assert not errors
    assert recorder.calls == [
        ("create-network", "local", "demo-default"),
        ("create-instance", "local", "demo-db"),
        ("create-instance", "local", "demo-api"),
        ("create-instance", "local", "demo-web"),
    ]


def test_destroy_order(orchestrator, recorder, stack):
    errors = orchestrator.apply_destroy(*stack)
    assert not errors
    assert recorder.calls == [
        ("delete-instance", "local", "demo-web"),
        ("delete-instance", "local", "demo-api"),
        ("delete-instance", "local", "demo-db"),
        ("delete-network", "local", "demo-default"),
    ]


def test_external_network_untouched(orchestrator, recorder, stack):
    orchestrator.apply_create(*stack)
    orchestrator.apply_destroy(*stack)
    assert "lan" not in recorder.names("create-network")
    assert "lan" not in recorder.names("delete-network")
    assert orchestrator.states[("network", "lan")] == ResourceState.SKIPPED


def test_external_service_untouched(orchestrator, recorder, make_model):
    model = make_model(deps={"db": [], "app": ["db"]}, services={"db": {"extensions": {"x-incus-external": True}}})
    graph = DependencyGraph.build(model.services)
    assert not orchestrator.apply_create(model, graph)
    assert recorder.names("create-instance") == ["demo-app"]
    assert orchestrator.states[("instance", "demo-db")] == ResourceState.SKIPPED


def test_independent_networks(orchestrator, recorder, make_model):
    model = make_model(networks={
        "net-a": {"name": "net-a", "extensions": {"x-incus-type": "bridge"}},
        "net-b": {"name": "net-b", "extensions": {"x-incus-type": "ovn", "x-incus-uplink": "up0"}},
    })
    graph = DependencyGraph.build(model.services)
    assert not orchestrator.apply_create(model, graph)

    assert sorted(recorder.names("create-network")) == ["net-a", "net-b"]
    assert len(recorder.calls) == 2
    net_a = recorder.specs[("create-network", "local", "net-a")]
    net_b = recorder.specs[("create-network", "local", "net-b")]
    assert (net_a.type, net_a.config) == ("bridge", {})
    assert (net_b.type, net_b.config) == ("ovn", {"network": "up0"})


def test_partial_failure_continues(orchestrator, recorder, make_model):
    model = make_model(deps={"x": [], "y": [], "z": []})
    graph = DependencyGraph.build(model.services)
    recorder.fail.update({"demo-x", "demo-z"})

    errors = orchestrator.apply_create(model, graph)

    assert recorder.names("create-instance") == ["demo-x", "demo-y", "demo-z"]
    assert len(errors) == 2
    assert all(isinstance(e, RemoteOperationError) for e in errors)
    assert [e.name for e in errors] == ["demo-x", "demo-z"]
    assert orchestrator.states[("instance", "demo-x")] == ResourceState.FAILED
    assert orchestrator.states[("instance", "demo-y")] == ResourceState.SUCCEEDED


def test_destroy_continues_after_failure(orchestrator, recorder, stack):
    recorder.fail.add("demo-api")
    errors = orchestrator.apply_destroy(*stack)
    assert len(errors) == 1
    assert recorder.names("delete-instance") == ["demo-web", "demo-api", "demo-db"]
    assert recorder.names("delete-network") == ["demo-default"]


def test_network_resolution_failure_does_not_block_instances(orchestrator, recorder, make_model):
    model = make_model(deps={"app": []}, networks={"bad": {"name": "nowhere:bad"}, "good": {}})
    errors = orchestrator.apply_create(model, DependencyGraph.build(model.services))
    assert len(errors) == 1
    assert recorder.names("create-network") == ["demo-good"]
    assert recorder.names("create-instance") == ["demo-app"]


def test_replicas(orchestrator, recorder, make_model):
    model = make_model(deps={"worker": []}, services={"worker": {"scale": 3}})
    orchestrator.apply_create(model, DependencyGraph.build(model.services))
    assert recorder.names("create-instance") == ["demo-worker-1", "demo-worker-2", "demo-worker-3"]


def test_instance_spec_carries_networks(orchestrator, recorder, make_model):
    model = make_model(
        deps={"app": []},
        networks={"front": {}, "back": {"name": "shared-back"}},
        services={"app": {"networks": ["front", "back"], "environment": {"A": "1"}}},
    )
    orchestrator.apply_create(model, DependencyGraph.build(model.services))
    spec = recorder.specs[("create-instance", "local", "demo-app")]
    assert spec.networks == ["demo-front", "shared-back"]
    assert spec.environment == {"A": "1"}
    assert spec.image == "images:debian/12"


def test_missing_dependency_issues_no_calls(orchestrator, recorder, make_model):
    model = make_model(deps={"x": ["ghost"]})
    with pytest.raises(UnknownDependencyError) as exc:
        graph = DependencyGraph.build(model.services)
        orchestrator.apply_create(model, graph)
    assert (exc.value.service, exc.value.missing) == ("x", "ghost")
    assert recorder.calls == []


def test_cancelled_before_start(registry, recorder, stack):
    cancel = threading.Event()
    cancel.set()
    orchestrator = ServiceOrchestrator(registry, client_factory=recorder.factory, cancel_event=cancel)
    errors = orchestrator.apply_create(*stack)
    assert recorder.calls == []
    [error] = errors
    assert isinstance(error, OperationCancelled)
    assert error.remaining == 4
    assert orchestrator.states == {
        ("network", "demo-default"): ResourceState.PENDING,
        ("network", "lan"): ResourceState.SKIPPED,
        ("instance", "demo-db"): ResourceState.PENDING,
        ("instance", "demo-api"): ResourceState.PENDING,
        ("instance", "demo-web"): ResourceState.PENDING,
    }


def test_destroy_cancelled_counts_networks(registry, recorder, stack):
    cancel = threading.Event()
    original = recorder.factory

    def factory(name, remote, project):
        client = original(name, remote, project)
        delete = client.delete_instance

        def delete_instance(instance):
            delete(instance)
            if instance == "demo-api":
                cancel.set()
        client.delete_instance = delete_instance
        return client

    orchestrator = ServiceOrchestrator(registry, client_factory=factory, cancel_event=cancel)
    [error] = orchestrator.apply_destroy(*stack)

    assert recorder.names("delete-instance") == ["demo-web", "demo-api"]
    assert recorder.names("delete-network") == []
    assert error.remaining == 2
    assert orchestrator.states[("instance", "demo-db")] == ResourceState.PENDING
    assert orchestrator.states[("network", "demo-default")] == ResourceState.PENDING


def test_reuse_after_cancel(registry, recorder, stack):
    cancel = threading.Event()
    cancel.set()
    orchestrator = ServiceOrchestrator(registry, client_factory=recorder.factory, cancel_event=cancel)
    assert orchestrator.apply_create(*stack)
    assert not cancel.is_set()

    assert not orchestrator.apply_create(*stack)
    assert recorder.names("create-instance") == ["demo-db", "demo-api", "demo-web"]
    assert orchestrator.states[("instance", "demo-web")] == ResourceState.SUCCEEDED


def interrupt_after(recorder, instance):
    original = recorder.factory

    def factory(name, remote, project):
        client = original(name, remote, project)
        create = client.create_instance

        def create_instance(spec):
            create(spec)
            if spec.name == instance:
                raise KeyboardInterrupt
        client.create_instance = create_instance
        return client
    return factory


def test_keyboard_interrupt_stops_new_operations(orchestrator, recorder, stack):
    orchestrator.client_factory = interrupt_after(recorder, "demo-api")
    errors = orchestrator.apply_create(*stack)

    assert recorder.names("create-instance") == ["demo-db", "demo-api"]
    assert orchestrator.states[("instance", "demo-db")] == ResourceState.SUCCEEDED
    assert orchestrator.states[("instance", "demo-api")] == ResourceState.FAILED
    assert orchestrator.states[("instance", "demo-web")] == ResourceState.PENDING
    cancelled = [e for e in errors if isinstance(e, OperationCancelled)]
    assert len(cancelled) == 1
    assert cancelled[0].remaining == 1


def test_keyboard_interrupt_in_worker_pool(registry, recorder, stack):
    orchestrator = ServiceOrchestrator(registry, client_factory=interrupt_after(recorder, "demo-api"), max_workers=4)
    errors = orchestrator.apply_create(*stack)

    assert recorder.names("create-instance") == ["demo-db", "demo-api"]
    assert orchestrator.states[("instance", "demo-db")] == ResourceState.SUCCEEDED
    assert orchestrator.states[("instance", "demo-api")] == ResourceState.FAILED
    assert orchestrator.states[("instance", "demo-web")] == ResourceState.PENDING
    cancelled = [e for e in errors if isinstance(e, OperationCancelled)]
    assert len(cancelled) == 1
    assert cancelled[0].remaining == 1


def test_parallel_respects_dependencies(registry, recorder, make_model):
    model = make_model(
        deps={"db": [], "cache": [], "api": ["db", "cache"], "web": ["api"], "worker": ["db"]},
        networks={"a": {}, "b": {}, "c": {}},
        defaults=NetworkDefaults(type="bridge"),
    )
    graph = DependencyGraph.build(model.services)
    orchestrator = ServiceOrchestrator(registry, client_factory=recorder.factory, max_workers=4)

    assert not orchestrator.apply_create(model, graph)
    created = recorder.names("create-instance")
    position = {name: i for i, name in enumerate(created)}
    for svc, deps in graph.edges.items():
        for dep in deps:
            assert position[f"demo-{dep}"] < position[f"demo-{svc}"]
    assert sorted(recorder.names("create-network")) == ["demo-a", "demo-b", "demo-c"]

    recorder.calls.clear()
    assert not orchestrator.apply_destroy(model, graph)
    deleted = recorder.names("delete-instance")
    position = {name: i for i, name in enumerate(deleted)}
    for svc, deps in graph.edges.items():
        for dep in deps:
            assert position[f"demo-{svc}"] < position[f"demo-{dep}"]
