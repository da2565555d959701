"""Query the local kubelet for pods and container resource metrics."""

from __future__ import annotations

import json
import math
import os
import re
import ssl
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass, field

from kepler_energy import metric_names

SA_TOKEN_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/token"
NODE_ENV = "NODE_IP"
KUBELET_PORT_ENV = "KUBELET_PORT"

SYSTEM_PROCESS_NAME = "system_processes"
SYSTEM_PROCESS_NAMESPACE = "system"

POD_NAME_TAG = "pod"
CONTAINER_NAME_TAG = "container"
NAMESPACE_TAG = "namespace"


class KubeletError(Exception):
    """Raised when the kubelet cannot be reached or its answer cannot be parsed."""


_METRIC_NAME = r"[a-zA-Z_:][a-zA-Z0-9_:]*"
_SAMPLE_RE = re.compile(rf"^({_METRIC_NAME})\s*(\{{.*\}})?\s*(\S+)(?:\s+(\S+))?\s*$")
_LABEL_RE = re.compile(r'\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*=\s*"((?:[^"\\]|\\.)*)"\s*(,|$)')
_ESCAPES = {"\\\\": "\\", '\\"': '"', "\\n": "\n"}
_TYPES = {"counter", "gauge", "summary", "histogram", "untyped"}


@dataclass
class _Family:
    type: str = "untyped"
    samples: list[tuple[dict[str, str], float]] = field(default_factory=list)


def _unescape(value: str) -> str:
    return re.sub(r"\\.", lambda m: _ESCAPES.get(m.group(0), m.group(0)), value)


def _parse_labels(body: str, lineno: int) -> dict[str, str]:
    labels: dict[str, str] = {}
    inner = body[1:-1].strip()
    pos = 0
    while pos < len(inner):
        match = _LABEL_RE.match(inner, pos)
        if not match:
            raise KubeletError(f"failed to parse: line {lineno}: malformed labels {body!r}")
        labels[match.group(1)] = _unescape(match.group(2))
        pos = match.end()
    return labels


def _parse_float(text: str, lineno: int) -> float:
    try:
        return float(text)
    except ValueError:
        raise KubeletError(f"failed to parse: line {lineno}: invalid value {text!r}") from None


def _family_name(sample_name: str, families: dict[str, _Family]) -> str:
    for suffix in ("_bucket", "_sum", "_count"):
        base = sample_name.removesuffix(suffix)
        if base != sample_name and base in families and families[base].type in ("summary", "histogram"):
            return base
    return sample_name


def _parse_text_format(text: str) -> dict[str, _Family]:
    families: dict[str, _Family] = {}
    typed: set[str] = set()
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        if line.startswith("#"):
            parts = line[1:].split(None, 3)
            if len(parts) < 2 or parts[0] not in ("HELP", "TYPE"):
                continue
            name = parts[1]
            if not re.fullmatch(_METRIC_NAME, name):
                raise KubeletError(f"failed to parse: line {lineno}: invalid metric name {name!r}")
            if parts[0] == "TYPE":
                kind = parts[2].lower() if len(parts) > 2 else ""
                if kind not in _TYPES:
                    raise KubeletError(f"failed to parse: line {lineno}: unknown metric type {kind!r}")
                if name in typed:
                    raise KubeletError(f"failed to parse: line {lineno}: second TYPE line for {name!r}")
                family = families.setdefault(name, _Family())
                if family.samples:
                    raise KubeletError(f"failed to parse: line {lineno}: TYPE line for {name!r} after samples")
                family.type = kind
                typed.add(name)
            else:
                families.setdefault(name, _Family())
            continue
        match = _SAMPLE_RE.match(line)
        if not match:
            raise KubeletError(f"failed to parse: line {lineno}: malformed sample {line!r}")
        name, label_body, value_text, timestamp = match.groups()
        labels = _parse_labels(label_body, lineno) if label_body else {}
        value = _parse_float(value_text, lineno)
        if timestamp is not None and not re.fullmatch(r"-?\d+", timestamp):
            raise KubeletError(f"failed to parse: line {lineno}: invalid timestamp {timestamp!r}")
        families.setdefault(_family_name(name, families), _Family()).samples.append((labels, value))
    return families


def _container_key(labels: dict[str, str]) -> str:
    namespace = labels.get(NAMESPACE_TAG, "")
    pod = labels.get(POD_NAME_TAG, "")
    container = labels.get(CONTAINER_NAME_TAG, "")
    return f"{namespace}/{pod}/{container}"


def parse_metrics(text: str) -> tuple[dict[str, float], dict[str, float]]:
    """Parse the kubelet resource metrics into per-container CPU and memory maps.

    Keys are ``namespace/pod/container``; an extra entry for the system
    processes holds the node total minus the sum over containers.
    """
    families = _parse_text_format(text)
    container_cpu: dict[str, float] = {}
    container_mem: dict[str, float] = {}
    node_cpu = node_mem = 0.0
    for name, family in families.items():
        for labels, raw_value in family.samples:
            value = raw_value if family.type in ("counter", "gauge") else 0.0
            if name == metric_names.KUBELET_NODE_CPU:
                node_cpu = value
            elif name == metric_names.KUBELET_NODE_MEMORY:
                node_mem = value
            elif name == metric_names.KUBELET_CONTAINER_CPU:
                container_cpu[_container_key(labels)] = value
            elif name == metric_names.KUBELET_CONTAINER_MEMORY:
                container_mem[_container_key(labels)] = value
    system_key = f"{SYSTEM_PROCESS_NAMESPACE}/{SYSTEM_PROCESS_NAME}"
    cpu_total = math.fsum(container_cpu.values())
    mem_total = math.fsum(container_mem.values())
    container_cpu[system_key] = node_cpu - cpu_total
    container_mem[system_key] = node_mem - mem_total
    return container_cpu, container_mem


class KubeletPodLister:
    """Client for the kubelet's pod list and resource metrics endpoints."""

    def __init__(self, node_name: str | None = None, port: str | None = None,
                 token_path: str = SA_TOKEN_PATH) -> None:
        node_name = node_name or os.environ.get(NODE_ENV) or "localhost"
        port = str(port or os.environ.get(KUBELET_PORT_ENV) or "10250")
        base = f"https://{node_name}:{port}"
        self.pods_url = base + "/pods"
        self.metrics_url = base + "/metrics/resource"
        self.token_path = token_path
        self._available: list[str] | None = None
        self._available_lock = threading.Lock()

    def _get(self, url: str) -> tuple[int, bytes]:
        try:
            with open(self.token_path, encoding="utf-8") as handle:
                token = handle.read().strip()
        except OSError as err:
            raise KubeletError(f"failed to read from {self.token_path!r}: {err}") from err
        request = urllib.request.Request(url, method="GET")
        request.add_header("Authorization", "Bearer " + token)
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        try:
            with urllib.request.urlopen(request, context=context) as response:
                return response.status, response.read()
        except urllib.error.HTTPError as err:
            return err.code, err.read()
        except (urllib.error.URLError, OSError) as err:
            raise KubeletError(f"failed to get response from {url!r}: {err}") from err

    def list_pods(self) -> list[dict]:
        """Return the pods the kubelet reports, as decoded JSON objects."""
        _, body = self._get(self.pods_url)
        try:
            pod_list = json.loads(body)
        except ValueError as err:
            raise KubeletError(f"failed to parse response body: {err}") from err
        if not isinstance(pod_list, dict):
            raise KubeletError("failed to parse response body: expected a JSON object")
        return pod_list.get("items") or []

    def list_metrics(self) -> tuple[dict[str, float], dict[str, float]]:
        """Fetch and parse the kubelet's resource metrics."""
        _, body = self._get(self.metrics_url)
        return parse_metrics(body.decode("utf-8", errors="replace"))

    def available_metrics(self) -> list[str]:
        """Return the kubelet usage metrics if the kubelet answered once with 200."""
        with self._available_lock:
            if self._available is None:
                try:
                    status, _ = self._get(self.metrics_url)
                except KubeletError:
                    self._available = []
                else:
                    self._available = (
                        [metric_names.KUBELET_CPU_USAGE, metric_names.KUBELET_MEMORY_USAGE]
                        if status == 200 else []
                    )
            return list(self._available)