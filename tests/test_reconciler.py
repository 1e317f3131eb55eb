import pytest

from servingop.apis import VERSION, KnativeServing, KnativeServingSpec, NotFoundError, Registry
from servingop.manifest import Cluster, Unstructured
from servingop.reconciler import (
    EVENT_TYPE_WARNING,
    EventRecorder,
    new_controller,
    split_meta_namespace_key,
)
from servingop.store import KnativeServingClient

NAMESPACE = "operator-tests"
NAME = "knative-serving"
KEY = f"{NAMESPACE}/{NAME}"

MANIFEST = """\
apiVersion: v1
kind: ConfigMap
metadata:
  name: config-logging
  namespace: knative-serving
data:
  loglevel.controller: info
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: controller
  namespace: knative-serving
spec:
  template:
    spec:
      containers:
      - name: controller
        image: example.invalid/controller:v1
"""


def _write_manifest(tmp_path, text=MANIFEST):
    directory = tmp_path / "knative-serving"
    directory.mkdir()
    (directory / "serving.yaml").write_text(text, encoding="utf-8")
    return tmp_path


def _setup(tmp_path, spec=None, text=MANIFEST, extra=()):
    cluster = Cluster()
    client = KnativeServingClient(
        [KnativeServing(name=NAME, namespace=NAMESPACE, spec=spec or KnativeServingSpec()), *extra]
    )
    reconciler = new_controller(cluster, client, _write_manifest(tmp_path, text), False)
    return cluster, client, reconciler


def _make_available(cluster):
    deployment = cluster.get("apps/v1", "Deployment", NAMESPACE, "controller")
    deployment.set_nested([{"type": "Available", "status": "True"}], "status", "conditions")
    cluster.apply(deployment)


def test_split_key_with_namespace():
    assert split_meta_namespace_key("ns/name") == ("ns", "name")


def test_split_key_without_namespace():
    assert split_meta_namespace_key("name") == ("", "name")


def test_split_key_rejects_extra_parts():
    with pytest.raises(ValueError):
        split_meta_namespace_key("a/b/c")


def test_event_recorder_keeps_events():
    recorder = EventRecorder()
    obj = KnativeServing(name=NAME)
    recorder.event(obj, EVENT_TYPE_WARNING, "InternalError", "boom")
    assert len(recorder.events) == 1
    event = recorder.events[0]
    assert (event.obj, event.event_type, event.reason, event.message) == (
        obj,
        "Warning",
        "InternalError",
        "boom",
    )


def test_first_reconcile_installs_and_waits_on_deployments(tmp_path):
    cluster, client, reconciler = _setup(tmp_path)
    reconciler.reconcile(KEY)
    status = client.get(NAMESPACE, NAME).status
    assert status.version == VERSION
    assert status.is_installed()
    assert status.is_deploying()
    assert not status.is_ready()
    deployment = cluster.get("apps/v1", "Deployment", NAMESPACE, "controller")
    assert deployment.namespace == NAMESPACE
    owners = deployment.get_nested("metadata", "ownerReferences")
    assert owners[0]["name"] == NAME


def test_reconcile_becomes_ready_once_deployments_available(tmp_path):
    cluster, client, reconciler = _setup(tmp_path)
    reconciler.reconcile(KEY)
    _make_available(cluster)
    reconciler.reconcile(KEY)
    status = client.get(NAMESPACE, NAME).status
    assert status.is_available()
    assert status.is_ready()
    assert not status.is_deploying()


def test_config_overrides_reach_config_map(tmp_path):
    spec = KnativeServingSpec(config={"logging": {"loglevel.controller": "debug"}})
    cluster, _, reconciler = _setup(tmp_path, spec=spec)
    reconciler.reconcile(KEY)
    config_map = cluster.get("v1", "ConfigMap", NAMESPACE, "config-logging")
    assert config_map.get_nested("data", "loglevel.controller") == "debug"


def test_registry_default_rewrites_images(tmp_path):
    spec = KnativeServingSpec(registry=Registry(default="registry.example.com/${NAME}:tag"))
    cluster, _, reconciler = _setup(tmp_path, spec=spec)
    reconciler.reconcile(KEY)
    deployment = cluster.get("apps/v1", "Deployment", NAMESPACE, "controller")
    containers = deployment.get_nested("spec", "template", "spec", "containers")
    assert containers[0]["image"] == "registry.example.com/controller:tag"


def test_obsolete_resources_are_deleted(tmp_path):
    cluster, _, reconciler = _setup(tmp_path)
    old_map = Unstructured(
        {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "config-controller", "namespace": NAMESPACE}}
    )
    old_service = Unstructured(
        {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": "knative-ingressgateway", "namespace": "istio-system"},
        }
    )
    cluster.apply(old_map)
    cluster.apply(old_service)
    reconciler.reconcile(KEY)
    with pytest.raises(NotFoundError):
        cluster.get("v1", "ConfigMap", NAMESPACE, "config-controller")
    with pytest.raises(NotFoundError):
        cluster.get("v1", "Service", "istio-system", "knative-ingressgateway")


def test_deleting_last_serving_removes_resources(tmp_path):
    cluster, client, reconciler = _setup(tmp_path)
    reconciler.reconcile(KEY)
    client.delete(NAMESPACE, NAME)
    reconciler.reconcile(KEY)
    assert reconciler.servings == set()
    with pytest.raises(NotFoundError):
        cluster.get("apps/v1", "Deployment", NAMESPACE, "controller")


def test_resources_kept_while_another_serving_exists(tmp_path):
    other = KnativeServing(name="other", namespace=NAMESPACE)
    cluster, client, reconciler = _setup(tmp_path, extra=[other])
    reconciler.reconcile(KEY)
    reconciler.reconcile(f"{NAMESPACE}/other")
    client.delete(NAMESPACE, NAME)
    reconciler.reconcile(KEY)
    assert reconciler.servings == {f"{NAMESPACE}/other"}
    deployment = cluster.get("apps/v1", "Deployment", NAMESPACE, "controller")
    assert deployment.name == "controller"


def test_invalid_key_is_ignored(tmp_path):
    _, client, reconciler = _setup(tmp_path)
    assert reconciler.reconcile("a/b/c") is None
    assert client.get(NAMESPACE, NAME).status.conditions == []
    assert reconciler.servings == set()


def test_transform_failure_records_internal_error(tmp_path):
    broken = "apiVersion: v1\nkind: ConfigMap\nmetadata: oops\n"
    _, client, reconciler = _setup(tmp_path, text=broken)
    with pytest.raises(TypeError):
        reconciler.reconcile(KEY)
    assert reconciler.recorder.events[-1].reason == "InternalError"
    assert reconciler.recorder.events[-1].event_type == EVENT_TYPE_WARNING
    assert KEY in reconciler.servings
    assert client.get(NAMESPACE, NAME).status.conditions == []


def test_new_controller_requires_manifest_directory(tmp_path):
    with pytest.raises(FileNotFoundError):
        new_controller(Cluster(), KnativeServingClient(), tmp_path, False)