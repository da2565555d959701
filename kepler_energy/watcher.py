"""Keep container metadata in step with pod events from the Kubernetes API server."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterable, Mapping, MutableMapping
from dataclasses import dataclass
from typing import Any

_log = logging.getLogger(__name__)

PODS = "pods"
CONTAINERS_READY = "ContainersReady"
INFORMER_TIMEOUT_SECONDS = 60

_CONTAINER_ID_PREFIX = re.compile(r".*//")
_STATUS_KEYS = ("containerStatuses", "initContainerStatuses", "ephemeralContainerStatuses")


def parse_container_id(container_id: str) -> str:
    """Strip the runtime prefix (such as ``containerd://``) from a container id."""
    return _CONTAINER_ID_PREFIX.sub("", container_id)


@dataclass
class ContainerInfo:
    """Identity of a container as reported by the API server."""

    container_name: str
    pod_name: str
    namespace: str
    container_id: str


def _metadata(pod: Mapping[str, Any]) -> Mapping[str, Any]:
    return pod.get("metadata") or {}


def _status(pod: Mapping[str, Any]) -> Mapping[str, Any]:
    return pod.get("status") or {}


class PodWatcher:
    """Apply pod add, update and delete events to a shared map of containers.

    Pods are given as decoded JSON objects in the API server's format.
    """

    def __init__(
        self,
        containers: MutableMapping[str, ContainerInfo] | None = None,
        lock: threading.Lock | None = None,
        resource_kind: str = PODS,
    ) -> None:
        self.containers: MutableMapping[str, ContainerInfo] = {} if containers is None else containers
        self.lock = lock if lock is not None else threading.Lock()
        self.resource_kind = resource_kind

    def _supported(self) -> bool:
        if self.resource_kind != PODS:
            _log.info("watcher does not support object type %s", self.resource_kind)
            return False
        return True

    def handle_add(self, pod: Any) -> None:
        """Record the containers of a pod whose containers are ready."""
        if not self._supported():
            return
        if not isinstance(pod, Mapping):
            _log.info("could not convert obj: %s", self.resource_kind)
            return
        meta = _metadata(pod)
        status = _status(pod)
        for condition in status.get("conditions") or []:
            if condition.get("type") != CONTAINERS_READY:
                continue
            with self.lock:
                errors = [self._fill_info(meta, status.get(key) or []) for key in _STATUS_KEYS]
            _log.debug("parsing pod %s %s status: %s", meta.get("name", ""), meta.get("namespace", ""), errors)

    def handle_update(self, old_pod: Any, new_pod: Any) -> None:
        """Treat a changed pod as added; ignore periodic resyncs of an unchanged pod."""
        if not self._supported():
            return
        if not isinstance(old_pod, Mapping) or not isinstance(new_pod, Mapping):
            _log.info("could not convert obj: %s", self.resource_kind)
            return
        if _metadata(new_pod).get("resourceVersion") == _metadata(old_pod).get("resourceVersion"):
            return
        self.handle_add(new_pod)

    def handle_delete(self, pod: Any) -> None:
        """Forget the containers of a deleted pod.

        Raises ``TypeError`` when ``pod`` is not a pod object.
        """
        if not self._supported():
            return
        if not isinstance(pod, Mapping):
            raise TypeError(f"could not convert obj: {self.resource_kind}")
        status = _status(pod)
        with self.lock:
            for key in _STATUS_KEYS:
                self._delete_info(status.get(key) or [])

    def _fill_info(self, meta: Mapping[str, Any], statuses: Iterable[Mapping[str, Any]]) -> str | None:
        error = None
        pod_name = meta.get("name", "")
        namespace = meta.get("namespace", "")
        for container in statuses:
            name = container.get("name", "")
            container_id = parse_container_id(container.get("containerID", ""))
            if not container_id:
                error = f"container {name} did not start yet"
                continue
            info = self.containers.get(container_id)
            if info is None:
                self.containers[container_id] = ContainerInfo(name, pod_name, namespace, container_id)
            else:
                info.container_name = name
                info.pod_name = pod_name
                info.namespace = namespace
            _log.debug("receiving container %s %s %s %s", name, pod_name, namespace, container_id)
        return error

    def _delete_info(self, statuses: Iterable[Mapping[str, Any]]) -> None:
        for container in statuses:
            self.containers.pop(parse_container_id(container.get("containerID", "")), None)