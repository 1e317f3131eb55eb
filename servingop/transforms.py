"""Transformers that apply a KnativeServing's overrides to manifest resources."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from servingop.apis import IstioGatewayOverride, KnativeServing, Registry
from servingop.manifest import Transformer, Unstructured

_LOG = logging.getLogger(__name__)

# The placeholder in an image template replaced by the container or image name.
CONTAINER_NAME_VARIABLE = "${NAME}"

_CONFIG_PREFIX = "config-"
_GATEWAY_API_VERSION = "networking.istio.io/v1alpha3"
_CACHING_API_VERSION = "caching.internal.knative.dev/v1alpha1"
_POD_SPEC_PATH = ("spec", "template", "spec")

_MISSING = object()


def update_config_map(
    cm: Unstructured, data: Mapping[str, str], log: logging.Logger | None = None
) -> None:
    """Set entries in a config map's data, only writing keys whose value differs."""
    log = log or _LOG
    for key, value in data.items():
        try:
            previous = cm.get_nested("data", key)
        except KeyError:
            previous = _MISSING
        if previous is _MISSING:
            log.info("Setting map=%s key=%s value=%s", cm.name, key, value)
        elif previous == value:
            continue
        else:
            log.info(
                "Setting map=%s key=%s value=%s previous=%s", cm.name, key, value, previous
            )
        cm.set_nested(value, "data", key)


def config_map_transform(
    instance: KnativeServing, log: logging.Logger | None = None
) -> Transformer:
    """Let the instance's config entries override those of the matching config maps."""
    log = log or _LOG

    def transform(item: Unstructured) -> None:
        if item.kind != "ConfigMap":
            return
        data = instance.spec.config.get(item.name[len(_CONFIG_PREFIX):])
        if data is not None:
            update_config_map(item, data, log)

    return transform


def _update_gateway(
    overrides: IstioGatewayOverride, item: Unstructured, log: logging.Logger
) -> None:
    if overrides.selector:
        log.debug("Updating Gateway name=%s selector=%s", item.name, overrides.selector)
        item.set_nested(dict(overrides.selector), "spec", "selector")
        log.debug("Finished conversion name=%s object=%s", item.name, item.object)


def gateway_transform(instance: KnativeServing, log: logging.Logger | None = None) -> Transformer:
    """Replace the selectors of the ingress and cluster-local Istio gateways."""
    log = log or _LOG

    def transform(item: Unstructured) -> None:
        if item.api_version != _GATEWAY_API_VERSION or item.kind != "Gateway":
            return
        if item.name == "knative-ingress-gateway":
            _update_gateway(instance.spec.knative_ingress_gateway, item, log)
        elif item.name == "cluster-local-gateway":
            _update_gateway(instance.spec.cluster_local_gateway, item, log)

    return transform


def _replace_name(image_template: str, name: str) -> str:
    return image_template.replace(CONTAINER_NAME_VARIABLE, name)


def _new_image(registry: Registry, name: str) -> str:
    override = registry.override.get(name, "")
    if override:
        return override
    return _replace_name(registry.default, name)


def _optional_nested(item: Unstructured, *path: str) -> object:
    try:
        return item.get_nested(*path)
    except KeyError:
        return None


def _update_deployment_images(
    item: Unstructured, registry: Registry, log: logging.Logger
) -> None:
    containers = _optional_nested(item, *_POD_SPEC_PATH, "containers") or []
    if not isinstance(containers, list):
        raise ValueError(f"deployment {item.name!r}: containers is not a list")
    for container in containers:
        if not isinstance(container, dict):
            raise ValueError(f"deployment {item.name!r}: container is not a map")
        new_image = _new_image(registry, container.get("name", ""))
        if new_image:
            log.debug(
                "Updating container image from: %s, to: %s", container.get("image"), new_image
            )
            container["image"] = new_image
    log.debug("Finished updating images name=%s containers=%s", item.name, containers)


def _update_image_pull_secrets(
    item: Unstructured, registry: Registry, log: logging.Logger
) -> None:
    if not registry.image_pull_secrets:
        return
    log.debug("Adding ImagePullSecrets: %s", registry.image_pull_secrets)
    existing = _optional_nested(item, *_POD_SPEC_PATH, "imagePullSecrets") or []
    if not isinstance(existing, list):
        raise ValueError(f"deployment {item.name!r}: imagePullSecrets is not a list")
    added = [{"name": name} for name in registry.image_pull_secrets]
    item.set_nested([*existing, *added], *_POD_SPEC_PATH, "imagePullSecrets")


def deployment_transform(
    instance: KnativeServing, log: logging.Logger | None = None
) -> Transformer:
    """Point deployment container images at the registry and add pull secrets."""
    log = log or _LOG

    def transform(item: Unstructured) -> None:
        if item.kind != "Deployment":
            return
        registry = instance.spec.registry
        log.debug("Updating Deployment name=%s registry=%s", item.name, registry)
        _update_deployment_images(item, registry, log)
        _update_image_pull_secrets(item, registry, log)
        log.debug("Finished conversion name=%s object=%s", item.name, item.object)

    return transform


def image_transform(instance: KnativeServing, log: logging.Logger | None = None) -> Transformer:
    """Point cached image resources at the registry."""
    log = log or _LOG

    def transform(item: Unstructured) -> None:
        if item.api_version != _CACHING_API_VERSION or item.kind != "Image":
            return
        registry = instance.spec.registry
        log.debug("Updating Image name=%s registry=%s", item.name, registry)
        new_image = _new_image(registry, item.name)
        if new_image:
            log.debug(
                "Updating image from: %s, to: %s", _optional_nested(item, "spec", "image"), new_image
            )
            item.set_nested(new_image, "spec", "image")
        log.debug("Finished conversion name=%s object=%s", item.name, item.object)

    return transform