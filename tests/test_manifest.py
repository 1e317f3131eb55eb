import pytest

from servingop.apis import KIND, KnativeServing, NotFoundError
from servingop.manifest import Cluster, Manifest, Unstructured, inject_namespace, inject_owner

DOCS = """\
apiVersion: v1
kind: ConfigMap
metadata:
  name: config-network
  namespace: knative-serving
data:
  key: value
---
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: controller
  namespace: knative-serving
"""

EXTRA = """\
apiVersion: v1
kind: ServiceAccount
metadata:
  name: controller
  namespace: knative-serving
"""


@pytest.fixture
def manifest_dir(tmp_path):
    (tmp_path / "core.yaml").write_text(DOCS)
    sub = tmp_path / "extra"
    sub.mkdir()
    (sub / "sa.yaml").write_text(EXTRA)
    (tmp_path / "notes.txt").write_text("not a manifest")
    return tmp_path


def make(api_version, kind, name, namespace=""):
    obj = {"apiVersion": api_version, "kind": kind, "metadata": {"name": name}}
    if namespace:
        obj["metadata"]["namespace"] = namespace
    return Unstructured(obj)


def test_from_file_skips_empty_documents(manifest_dir):
    manifest = Manifest.from_path(manifest_dir / "core.yaml")
    assert [r.kind for r in manifest.resources] == ["ConfigMap", "Deployment"]
    assert manifest.resources[0].get_nested("data", "key") == "value"


def test_from_directory_non_recursive(manifest_dir):
    manifest = Manifest.from_path(manifest_dir, False)
    assert [r.name for r in manifest.resources] == ["config-network", "controller"]


def test_from_directory_recursive(manifest_dir):
    manifest = Manifest.from_path(manifest_dir, True)
    assert sorted(r.kind for r in manifest.resources) == ["ConfigMap", "Deployment", "ServiceAccount"]


def test_missing_path(tmp_path):
    with pytest.raises(FileNotFoundError):
        Manifest.from_path(tmp_path / "absent")


def test_transform_returns_copy(manifest_dir):
    manifest = Manifest.from_path(manifest_dir / "core.yaml")

    def rename(u):
        u.name = u.name + "-x"

    transformed = manifest.transform(rename)
    assert [r.name for r in transformed.resources] == ["config-network-x", "controller-x"]
    assert [r.name for r in manifest.resources] == ["config-network", "controller"]


def test_transform_propagates_errors(manifest_dir):
    manifest = Manifest.from_path(manifest_dir / "core.yaml")

    def fail(u):
        raise RuntimeError("bad")

    with pytest.raises(RuntimeError, match="bad"):
        manifest.transform(fail)


def test_inject_namespace():
    resources = [
        make("v1", "ConfigMap", "cm", "old"),
        make("v1", "Namespace", "old"),
        make("rbac.authorization.k8s.io/v1", "ClusterRole", "role"),
    ]
    binding = make("rbac.authorization.k8s.io/v1", "ClusterRoleBinding", "bind")
    binding.object["subjects"] = [{"kind": "ServiceAccount", "name": "sa", "namespace": "old"}]
    resources.append(binding)
    out = Manifest(resources).transform(inject_namespace("target")).resources
    assert out[0].namespace == "target"
    assert out[1].name == "target"
    assert out[1].namespace == ""
    assert out[2].namespace == ""
    assert out[3].object["subjects"][0]["namespace"] == "target"


def test_inject_owner():
    owner = KnativeServing(name="ks", namespace="ns", uid="uid-1")
    resources = [make("v1", "ConfigMap", "cm", "ns"), make("rbac.authorization.k8s.io/v1", "ClusterRole", "role")]
    out = Manifest(resources).transform(inject_owner(owner)).resources
    ref = out[0].get_nested("metadata", "ownerReferences")[0]
    assert ref["kind"] == KIND
    assert ref["name"] == "ks"
    assert ref["uid"] == "uid-1"
    assert ref["controller"] is True
    with pytest.raises(KeyError):
        out[1].get_nested("metadata", "ownerReferences")


def test_apply_all_and_get(manifest_dir):
    cluster = Cluster()
    manifest = Manifest.from_path(manifest_dir / "core.yaml", False, cluster)
    manifest.apply_all()
    got = cluster.get("v1", "ConfigMap", "knative-serving", "config-network")
    assert got == manifest.resources[0]


def test_apply_keeps_status():
    cluster = Cluster()
    deployment = make("apps/v1", "Deployment", "d", "ns")
    live = deployment.deep_copy()
    live.object["status"] = {"replicas": 1}
    cluster.apply(live)
    cluster.apply(deployment)
    assert cluster.get("apps/v1", "Deployment", "ns", "d").object["status"] == {"replicas": 1}


def test_delete_all(manifest_dir):
    cluster = Cluster()
    manifest = Manifest.from_path(manifest_dir / "core.yaml", False, cluster)
    manifest.apply_all()
    manifest.delete_all()
    with pytest.raises(NotFoundError):
        cluster.get("apps/v1", "Deployment", "knative-serving", "controller")


def test_delete_ignores_missing():
    kept = make("v1", "ConfigMap", "kept", "ns")
    cluster = Cluster([kept])
    manifest = Manifest([], cluster)
    manifest.delete(make("v1", "Service", "gone", "istio-system"))
    assert cluster.get("v1", "ConfigMap", "ns", "kept").name == "kept"


def test_cluster_delete_missing_raises():
    with pytest.raises(NotFoundError):
        Cluster().delete(make("v1", "ConfigMap", "cm", "ns"))


def test_apply_all_without_cluster():
    with pytest.raises(ValueError):
        Manifest([make("v1", "ConfigMap", "cm", "ns")]).apply_all()


def test_nested_fields():
    u = Unstructured()
    u.set_nested("v", "data", "k")
    assert u.get_nested("data", "k") == "v"
    with pytest.raises(KeyError):
        u.get_nested("data", "missing")


def test_clearing_namespace_removes_it():
    u = make("v1", "ConfigMap", "cm", "ns")
    u.namespace = ""
    assert "namespace" not in u.object["metadata"]
    assert u.namespace == ""