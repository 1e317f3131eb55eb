"""The controller that installs and maintains the resources a KnativeServing asks for."""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from servingop.apis import VERSION, KnativeServing, NotFoundError
from servingop.manifest import Cluster, Manifest, Unstructured
from servingop.platforms import PLATFORMS, Platforms
from servingop.store import KnativeServingClient

CONTROLLER_AGENT_NAME = "knativeserving-controller"
RECONCILER_NAME = "KnativeServing"

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"

_LOG = logging.getLogger("servingop")

# Resources left behind by earlier releases: (namespace, name, apiVersion, kind).
# An empty namespace stands for the KnativeServing's own namespace.
_OBSOLETE_RESOURCES = (
    ("istio-system", "knative-ingressgateway", "v1", "Service"),
    ("istio-system", "knative-ingressgateway", "apps/v1", "Deployment"),
    ("istio-system", "knative-ingressgateway", "autoscaling/v1", "HorizontalPodAutoscaler"),
    ("", "config-controller", "v1", "ConfigMap"),
)


def split_meta_namespace_key(key: str) -> tuple[str, str]:
    """Split a "namespace/name" or "name" key into its namespace and name."""
    parts = key.split("/")
    if len(parts) == 1:
        return "", parts[0]
    if len(parts) == 2:
        return parts[0], parts[1]
    raise ValueError(f"unexpected key format: {key!r}")


@dataclass(frozen=True)
class Event:
    """One event recorded against an object."""

    obj: Any
    event_type: str
    reason: str
    message: str


class EventRecorder:
    """Keeps the events reported by the controller, and logs them."""

    def __init__(self, component: str = CONTROLLER_AGENT_NAME, log: logging.Logger | None = None) -> None:
        self.component = component
        self.events: list[Event] = []
        self._log = (log or _LOG).getChild("event-broadcaster")

    def event(self, obj: Any, event_type: str, reason: str, message: str) -> None:
        self.events.append(Event(obj, event_type, reason, message))
        self._log.info(
            "Event(%s): type: %s reason: %s %s",
            getattr(obj, "name", obj),
            event_type,
            reason,
            message,
        )


class Reconciler:
    """Converges the cluster towards what each KnativeServing asks for."""

    def __init__(
        self,
        cluster: Cluster,
        client: KnativeServingClient,
        config: Manifest,
        recorder: EventRecorder | None = None,
        log: logging.Logger | None = None,
        platforms: Platforms = PLATFORMS,
    ) -> None:
        self.log = (log or _LOG).getChild(CONTROLLER_AGENT_NAME)
        self.cluster = cluster
        self.client = client
        self.lister = client.lister()
        self.config = config
        self.recorder = recorder or EventRecorder(CONTROLLER_AGENT_NAME, self.log)
        self.platforms = platforms
        self.servings: set[str] = set()

    def reconcile(self, key: str) -> None:
        """Reconcile the KnativeServing named by key, then write back its status."""
        try:
            namespace, name = split_meta_namespace_key(key)
        except ValueError:
            self.log.error("invalid resource key: %s", key)
            return

        try:
            original = self.lister.get(namespace, name)
        except NotFoundError:
            self.servings.discard(key)
            if not self.servings:
                self.config.delete_all()
            return

        self.servings.add(key)
        knative_serving = original.deep_copy()

        reconcile_error: Exception | None = None
        try:
            self._reconcile(knative_serving)
        except Exception as error:  # recorded below, after the status is written
            reconcile_error = error

        if original.status != knative_serving.status:
            try:
                self._update_status(knative_serving)
            except Exception as error:
                self.log.warning("Failed to update knativeServing status: %s", error)
                self.recorder.event(
                    knative_serving,
                    EVENT_TYPE_WARNING,
                    "UpdateFailed",
                    f'Failed to update status for KnativeServing "{knative_serving.name}": {error}',
                )
                raise

        if reconcile_error is not None:
            self.recorder.event(
                knative_serving, EVENT_TYPE_WARNING, "InternalError", str(reconcile_error)
            )
            raise reconcile_error

    def _reconcile(self, instance: KnativeServing) -> None:
        log = self.log.getChild(f"{instance.namespace}.{instance.name}")
        log.info("Reconciling KnativeServing status=%s", instance.status)
        manifest = self._transform(instance)
        for stage in (
            self._init_status,
            self._install,
            self._check_deployments,
            self._delete_obsolete_resources,
        ):
            stage(manifest, instance)
        log.info("Reconcile stages complete status=%s", instance.status)

    def _transform(self, instance: KnativeServing) -> Manifest:
        self.log.debug("Transforming manifest")
        transformers = self.platforms.transformers(self.cluster, instance, self.log)
        return self.config.transform(*transformers)

    def _update_status(self, instance: KnativeServing) -> None:
        after = self.client.update_status(instance)
        for f in dataclasses.fields(after):
            setattr(instance, f.name, getattr(after, f.name))

    def _init_status(self, _manifest: Manifest, instance: KnativeServing) -> None:
        self.log.debug("Initializing status")
        if not instance.status.conditions:
            instance.status.initialize_conditions()
            self._update_status(instance)

    def _install(self, manifest: Manifest, instance: KnativeServing) -> None:
        self.log.debug("Installing manifest")
        try:
            manifest.apply_all()
        except Exception as error:
            instance.status.mark_install_failed(str(error))
            raise
        instance.status.mark_install_succeeded()
        instance.status.version = VERSION

    def _check_deployments(self, manifest: Manifest, instance: KnativeServing) -> None:
        self.log.debug("Checking deployments")
        try:
            self._mark_deployments(manifest, instance)
        finally:
            try:
                self._update_status(instance)
            except Exception as error:
                self.log.warning("Failed to update knativeServing status: %s", error)

    def _mark_deployments(self, manifest: Manifest, instance: KnativeServing) -> None:
        for item in manifest.resources:
            if item.kind != "Deployment":
                continue
            try:
                deployment = self.cluster.get(item.api_version, item.kind, item.namespace, item.name)
            except NotFoundError:
                instance.status.mark_deployments_not_ready()
                return
            except Exception:
                instance.status.mark_deployments_not_ready()
                raise
            if not _is_available(deployment):
                instance.status.mark_deployments_not_ready()
                return
        instance.status.mark_deployments_available()

    def _delete_obsolete_resources(self, manifest: Manifest, instance: KnativeServing) -> None:
        for namespace, name, api_version, kind in _OBSOLETE_RESOURCES:
            item = Unstructured()
            item.namespace = namespace or instance.namespace
            item.name = name
            item.api_version = api_version
            item.kind = kind
            manifest.delete(item)


def _is_available(deployment: Unstructured) -> bool:
    try:
        conditions = deployment.get_nested("status", "conditions")
    except KeyError:
        return False
    return any(
        isinstance(c, dict) and c.get("type") == "Available" and c.get("status") == "True"
        for c in conditions or []
    )


def new_controller(
    cluster: Cluster,
    client: KnativeServingClient,
    data_path: str | Path | None = None,
    recursive: bool = False,
) -> Reconciler:
    """Build a reconciler whose manifest is loaded from the knative-serving data directory."""
    if data_path is None:
        data_path = os.environ.get("KO_DATA_PATH", "")
    config = Manifest.from_path(Path(data_path) / "knative-serving", recursive, cluster)
    reconciler = Reconciler(cluster, client, config)
    reconciler.log.info("Setting up event handlers for %s", RECONCILER_NAME)
    return reconciler