"""Platform-specific adjustments to the installed manifest."""

from __future__ import annotations

import logging
from collections.abc import Callable

from servingop.apis import KnativeServing, NotFoundError
from servingop.manifest import Cluster, Transformer, Unstructured, inject_namespace, inject_owner
from servingop.transforms import (
    config_map_transform,
    deployment_transform,
    gateway_transform,
    image_transform,
    update_config_map,
)

Configurator = Callable[[Cluster, logging.Logger], "Transformer | None"]

_MINIKUBE_EGRESS = {"istio.sidecar.includeOutboundIPRanges": "10.0.0.1/24"}


class Platforms(list):
    """Configurators that may each contribute one transformer for the platform in use."""

    def transformers(
        self, cluster: Cluster, instance: KnativeServing, log: logging.Logger
    ) -> list[Transformer]:
        """Return the common transformers followed by those the platforms contribute."""
        log = log.getChild("extensions")
        result: list[Transformer] = [
            inject_owner(instance),
            inject_namespace(instance.namespace),
            config_map_transform(instance, log),
            deployment_transform(instance, log),
            image_transform(instance, log),
            gateway_transform(instance, log),
        ]
        for configure in self:
            transformer = configure(cluster, log)
            if transformer is not None:
                result.append(transformer)
        return result


def configure_minikube(cluster: Cluster, log: logging.Logger) -> Transformer | None:
    """Return a transformer for minikube clusters, or None when not running in one."""
    log = log.getChild("minikube")
    try:
        cluster.get("v1", "Node", "", "minikube")
    except NotFoundError:
        return None
    except Exception:
        log.exception("Unable to query for minikube node")
        return None

    def egress(item: Unstructured) -> None:
        if item.kind == "ConfigMap" and item.name == "config-network":
            update_config_map(item, _MINIKUBE_EGRESS, log)

    return egress


PLATFORMS = Platforms([configure_minikube])