# servingop

`servingop` holds the logic of an operator that installs Knative Serving
from a manifest of resources and keeps it in the state that a
`KnativeServing` resource asks for. Resources are applied to, read from and
deleted from an in-memory `Cluster`.

A `KnativeServing` resource describes the installation you want:

- `spec.config` overrides entries in the shipped config maps: the key is the
  config map name without its `config-` prefix. Only keys whose value differs
  are written.
- `spec.registry` overrides container images. `default` is an image template
  in which `${NAME}` is replaced by the container or image name. `override`
  maps single names to full image references and wins over `default`.
  `image_pull_secrets` (a list of secret names) are appended to every
  deployment's pod spec.
- `spec.knative_ingress_gateway` and `spec.cluster_local_gateway` replace the
  selector of the Istio gateways named `knative-ingress-gateway` and
  `cluster-local-gateway`.

The status records the installed version and the conditions
`InstallSucceeded`, `DeploymentsAvailable` and `Ready`. `Ready` becomes true
once both of the others are true, and false as soon as either is marked false.

## Installation

The package needs Python 3.10 or later and depends only on PyYAML. Install
it with your usual Python package installer. The `test` extra adds pytest.

## Modules

- `servingop.apis`: the `KnativeServing` resource with `KnativeServingSpec`,
  `Registry`, `IstioGatewayOverride`, `KnativeServingStatus` and
  `KnativeServingList`; `Condition` and `ConditionStatus`; `GroupVersion`,
  `GroupVersionKind`, `GroupResource`, `resource()`; and `NotFoundError`,
  raised whenever a requested object does not exist.
- `servingop.manifest`: `Unstructured` resources (plain nested dictionaries
  with `api_version`, `kind`, `name` and `namespace` properties and
  `get_nested` / `set_nested`), `Manifest` (loaded from YAML or JSON files
  with `Manifest.from_path`), the in-memory `Cluster` that a manifest is
  applied to and deleted from, and the `inject_owner` and `inject_namespace`
  transformers.
- `servingop.store`: `KnativeServingClient`, which keeps `KnativeServing`
  resources with a separate status update, and `KnativeServingLister`, a
  read-only view of them.
- `servingop.transforms`: `config_map_transform`, `update_config_map`,
  `deployment_transform`, `image_transform` and `gateway_transform`.
- `servingop.platforms`: `Platforms`, which builds the full list of
  transformers, and `configure_minikube`, which adds the
  `istio.sidecar.includeOutboundIPRanges` setting to `config-network` when
  the cluster holds a `Node` named `minikube`.
- `servingop.reconciler`: `Reconciler`, `EventRecorder` (events kept in its
  `events` list and logged), `split_meta_namespace_key` and
  `new_controller`.

## Status conditions

```python
from servingop.apis import KnativeServingStatus

status = KnativeServingStatus()
status.initialize_conditions()
status.mark_install_succeeded()
assert status.is_installed()
assert status.is_deploying()

status.mark_deployments_available()
assert status.is_ready()
```

## Reconciling

`new_controller(cluster, client, data_path, recursive)` loads the manifest
found under `knative-serving/` in `data_path` (the `KO_DATA_PATH`
environment variable when `data_path` is not given), looking into
subdirectories when `recursive` is true, and returns a `Reconciler`. Each
call to `reconcile("<namespace>/<name>")` then:

1. transforms the manifest for that `KnativeServing`;
2. sets up the status conditions when there are none;
3. applies every resource and records the installed version;
4. checks that every deployment in the manifest has an `Available`
   condition that is `True` in the cluster;
5. deletes resources left behind by older releases.

The status is written back through the client when it changed. A failure in
any stage is recorded as an `InternalError` warning event and raised again.
When the last `KnativeServing` is gone, every resource of the manifest is
deleted.

## What this package does not do

There is no command to run and no connection to a real Kubernetes API
server: `Cluster` and `KnativeServingClient` keep everything in memory.
Nothing watches for changes either; the caller decides when to call
`Reconciler.reconcile`.