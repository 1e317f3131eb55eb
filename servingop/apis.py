"""Resource types for the KnativeServing custom resource and its status lifecycle."""

from __future__ import annotations

import copy
import enum
from dataclasses import dataclass, field

VERSION = "0.8.0"

GROUP_NAME = "serving.knative.dev"
SCHEMA_VERSION = "v1alpha1"
KIND = "KnativeServing"

READY = "Ready"
INSTALL_SUCCEEDED = "InstallSucceeded"
DEPLOYMENTS_AVAILABLE = "DeploymentsAvailable"

# Conditions that must all be true for the Ready condition to be true.
_DEPENDENTS = (DEPLOYMENTS_AVAILABLE, INSTALL_SUCCEEDED)


@dataclass(frozen=True)
class GroupResource:
    """A resource name qualified by its API group."""

    group: str
    resource: str

    def __str__(self) -> str:
        if not self.group:
            return self.resource
        return f"{self.resource}.{self.group}"


@dataclass(frozen=True)
class GroupVersionKind:
    """An API group, version and kind."""

    group: str
    version: str
    kind: str

    def __str__(self) -> str:
        return f"{self.group}/{self.version}, Kind={self.kind}"


@dataclass(frozen=True)
class _GroupVersionResource:
    group: str
    version: str
    resource: str

    def group_resource(self) -> GroupResource:
        return GroupResource(self.group, self.resource)


@dataclass(frozen=True)
class GroupVersion:
    """An API group together with a version of it."""

    group: str
    version: str

    def __str__(self) -> str:
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"

    def with_kind(self, kind: str) -> GroupVersionKind:
        return GroupVersionKind(self.group, self.version, kind)

    def with_resource(self, resource: str) -> _GroupVersionResource:
        return _GroupVersionResource(self.group, self.version, resource)


SCHEME_GROUP_VERSION = GroupVersion(GROUP_NAME, SCHEMA_VERSION)


def resource(resource: str) -> GroupResource:
    """Qualify an unqualified resource name with this API group."""
    return SCHEME_GROUP_VERSION.with_resource(resource).group_resource()


class NotFoundError(LookupError):
    """Raised when a requested object does not exist."""

    def __init__(self, group_resource: GroupResource, name: str) -> None:
        super().__init__(f'{group_resource} "{name}" not found')
        self.group_resource = group_resource
        self.name = name


class ConditionStatus(str, enum.Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


@dataclass
class Condition:
    """One observation of an aspect of a resource's state."""

    type: str
    status: ConditionStatus = ConditionStatus.UNKNOWN
    reason: str = ""
    message: str = ""

    def is_true(self) -> bool:
        return self.status is ConditionStatus.TRUE


@dataclass
class Registry:
    """Image overrides for the installed images."""

    default: str = ""
    override: dict[str, str] = field(default_factory=dict)
    image_pull_secrets: list[str] = field(default_factory=list)


@dataclass
class IstioGatewayOverride:
    """Selector values replacing those of an Istio gateway."""

    selector: dict[str, str] = field(default_factory=dict)


@dataclass
class KnativeServingSpec:
    """Desired state of a KnativeServing."""

    config: dict[str, dict[str, str]] = field(default_factory=dict)
    registry: Registry = field(default_factory=Registry)
    knative_ingress_gateway: IstioGatewayOverride = field(default_factory=IstioGatewayOverride)
    cluster_local_gateway: IstioGatewayOverride = field(default_factory=IstioGatewayOverride)


@dataclass
class KnativeServingStatus:
    """Observed state of a KnativeServing."""

    version: str = ""
    conditions: list[Condition] = field(default_factory=list)

    def get_condition(self, condition_type: str) -> Condition | None:
        return next((c for c in self.conditions if c.type == condition_type), None)

    def _is_true(self, condition_type: str) -> bool:
        condition = self.get_condition(condition_type)
        return condition is not None and condition.is_true()

    def _set_condition(self, condition: Condition) -> None:
        kept = [c for c in self.conditions if c.type != condition.type]
        kept.append(condition)
        kept.sort(key=lambda c: c.type)
        self.conditions = kept

    def _mark_true(self, condition_type: str) -> None:
        self._set_condition(Condition(condition_type, ConditionStatus.TRUE))
        if all(self._is_true(t) for t in _DEPENDENTS):
            self._set_condition(Condition(READY, ConditionStatus.TRUE))

    def _mark_false(self, condition_type: str, reason: str, message: str) -> None:
        types = [condition_type]
        if condition_type in _DEPENDENTS:
            types.append(READY)
        for t in types:
            self._set_condition(Condition(t, ConditionStatus.FALSE, reason, message))

    def is_ready(self) -> bool:
        return self._is_true(READY)

    def is_installed(self) -> bool:
        return self._is_true(INSTALL_SUCCEEDED)

    def is_available(self) -> bool:
        return self._is_true(DEPLOYMENTS_AVAILABLE)

    def is_deploying(self) -> bool:
        return self.is_installed() and not self.is_available()

    def initialize_conditions(self) -> None:
        """Set every absent condition to Unknown (or True when already Ready)."""
        happy = self.get_condition(READY)
        if happy is None:
            happy = Condition(READY, ConditionStatus.UNKNOWN)
            self._set_condition(happy)
        status = ConditionStatus.TRUE if happy.is_true() else ConditionStatus.UNKNOWN
        for condition_type in _DEPENDENTS:
            if self.get_condition(condition_type) is None:
                self._set_condition(Condition(condition_type, status))

    def mark_install_failed(self, msg: str) -> None:
        self._mark_false(INSTALL_SUCCEEDED, "Error", f"Install failed with message: {msg}")

    def mark_install_succeeded(self) -> None:
        self._mark_true(INSTALL_SUCCEEDED)

    def mark_deployments_available(self) -> None:
        self._mark_true(DEPLOYMENTS_AVAILABLE)

    def mark_deployments_not_ready(self) -> None:
        self._mark_false(DEPLOYMENTS_AVAILABLE, "NotReady", "Waiting on deployments")


@dataclass
class KnativeServing:
    """The KnativeServing custom resource."""

    name: str = ""
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    uid: str = ""
    spec: KnativeServingSpec = field(default_factory=KnativeServingSpec)
    status: KnativeServingStatus = field(default_factory=KnativeServingStatus)

    def group_version_kind(self) -> GroupVersionKind:
        return SCHEME_GROUP_VERSION.with_kind(KIND)

    def deep_copy(self) -> KnativeServing:
        return copy.deepcopy(self)


@dataclass
class KnativeServingList:
    """A list of KnativeServing resources."""

    items: list[KnativeServing] = field(default_factory=list)