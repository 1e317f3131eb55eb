"""An in-memory client and lister for KnativeServing resources."""

from __future__ import annotations

import copy
from collections.abc import Mapping

from servingop.apis import KnativeServing, KnativeServingList, NotFoundError, resource

_Key = tuple[str, str]


def _matches(labels: Mapping[str, str], selector: Mapping[str, str] | None) -> bool:
    if not selector:
        return True
    return all(labels.get(k) == v for k, v in selector.items())


class KnativeServingLister:
    """Read-only view of cached KnativeServings; returned objects must not be modified."""

    def __init__(self, items: Mapping[_Key, KnativeServing]) -> None:
        self._items = items

    def list(self, selector: Mapping[str, str] | None = None) -> list[KnativeServing]:
        return [
            item for _, item in sorted(self._items.items()) if _matches(item.labels, selector)
        ]

    def get(self, namespace: str, name: str) -> KnativeServing:
        try:
            return self._items[(namespace, name)]
        except KeyError:
            raise NotFoundError(resource("knativeserving"), name) from None


class KnativeServingClient:
    """Stores KnativeServings the way the API server would, with a status subresource."""

    def __init__(self, objects: tuple[KnativeServing, ...] | list[KnativeServing] = ()) -> None:
        self._items: dict[_Key, KnativeServing] = {}
        for item in objects:
            self.create(item)

    def _stored(self, namespace: str, name: str) -> KnativeServing:
        try:
            return self._items[(namespace, name)]
        except KeyError:
            raise NotFoundError(resource("knativeservings"), name) from None

    def create(self, knative_serving: KnativeServing) -> KnativeServing:
        key = (knative_serving.namespace, knative_serving.name)
        if key in self._items:
            raise ValueError(f'{resource("knativeservings")} "{knative_serving.name}" already exists')
        self._items[key] = knative_serving.deep_copy()
        return knative_serving.deep_copy()

    def update(self, knative_serving: KnativeServing) -> KnativeServing:
        """Replace everything but the status."""
        current = self._stored(knative_serving.namespace, knative_serving.name)
        updated = knative_serving.deep_copy()
        updated.status = copy.deepcopy(current.status)
        self._items[(updated.namespace, updated.name)] = updated
        return updated.deep_copy()

    def update_status(self, knative_serving: KnativeServing) -> KnativeServing:
        """Replace only the status."""
        current = self._stored(knative_serving.namespace, knative_serving.name)
        updated = current.deep_copy()
        updated.status = copy.deepcopy(knative_serving.status)
        self._items[(updated.namespace, updated.name)] = updated
        return updated.deep_copy()

    def get(self, namespace: str, name: str) -> KnativeServing:
        return self._stored(namespace, name).deep_copy()

    def list(self, namespace: str = "", selector: Mapping[str, str] | None = None) -> KnativeServingList:
        """List the KnativeServings in a namespace, or in all when it is empty."""
        return KnativeServingList(
            items=[
                item.deep_copy()
                for (ns, _), item in sorted(self._items.items())
                if (not namespace or ns == namespace) and _matches(item.labels, selector)
            ]
        )

    def delete(self, namespace: str, name: str) -> None:
        self._stored(namespace, name)
        del self._items[(namespace, name)]

    def lister(self) -> KnativeServingLister:
        return KnativeServingLister(self._items)