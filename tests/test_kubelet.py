import json
from unittest import mock

import pytest

from kepler_energy.kubelet import (
    SYSTEM_PROCESS_NAME,
    SYSTEM_PROCESS_NAMESPACE,
    KubeletError,
    KubeletPodLister,
    parse_metrics,
)

LIST_METRICS_OUTPUT = """
# HELP node_cpu_usage_seconds_total [ALPHA] Cumulative cpu time consumed by the node in core-seconds
# TYPE node_cpu_usage_seconds_total counter
node_cpu_usage_seconds_total 531271.893651 1669950438731
# HELP node_memory_working_set_bytes [ALPHA] Current working set of the node in bytes
# TYPE node_memory_working_set_bytes gauge
node_memory_working_set_bytes 5.871231414e+09 1669950438731
# HELP container_cpu_usage_seconds_total [ALPHA] Cumulative cpu time consumed by the container in core-seconds
# TYPE container_cpu_usage_seconds_total counter
container_cpu_usage_seconds_total{container="kepler-exporter",namespace="kepler",pod="kepler-exporter-rksvt"} 22.985283 1669950431811
container_cpu_usage_seconds_total{container="busybox",namespace="default",pod="busybox"} 0.035062 1669950435121
# HELP container_memory_working_set_bytes [ALPHA] Current working set of the container in bytes
# TYPE container_memory_working_set_bytes gauge
container_memory_working_set_bytes{container="busybox",namespace="default",pod="busybox"} 2.46897321e+08 1669950435121
container_memory_working_set_bytes{container="kepler-exporter",namespace="kepler",pod="kepler-exporter-rksvt"} 1.09776896e+08 1669950431811
"""

SYSTEM_KEY = f"{SYSTEM_PROCESS_NAMESPACE}/{SYSTEM_PROCESS_NAME}"


def test_list_metrics():
    cpu, mem = parse_metrics(LIST_METRICS_OUTPUT)
    # 3 includes the system container
    assert len(cpu) == 3
    assert len(mem) == 3
    c1 = "kepler/kepler-exporter-rksvt/kepler-exporter"
    assert cpu[c1] == 22.985283
    assert mem[c1] == 1.09776896e08
    c2 = "default/busybox/busybox"
    assert cpu[c2] == 0.035062
    assert mem[c2] == 2.46897321e08


def test_system_entry_completes_node_totals():
    cpu, mem = parse_metrics(LIST_METRICS_OUTPUT)
    assert sum(cpu.values()) == pytest.approx(531271.893651)
    assert sum(mem.values()) == pytest.approx(5.871231414e09)
    assert mem[SYSTEM_KEY] > 0


def test_untyped_family_counts_as_zero():
    text = 'container_cpu_usage_seconds_total{container="a",namespace="n",pod="p"} 5\n'
    cpu, mem = parse_metrics(text)
    assert cpu["n/p/a"] == 0.0
    assert mem == {SYSTEM_KEY: 0.0}


def test_label_escapes_are_decoded():
    text = (
        "# TYPE container_cpu_usage_seconds_total counter\n"
        'container_cpu_usage_seconds_total{container="a\\"b",namespace="n",pod="p"} 1.5\n'
    )
    cpu, _ = parse_metrics(text)
    assert cpu['n/p/a"b'] == 1.5


@pytest.mark.parametrize(
    "text",
    [
        "node_cpu_usage_seconds_total notanumber\n",
        'container_cpu_usage_seconds_total{container=busybox} 1\n',
        "# TYPE node_cpu_usage_seconds_total bogus\n",
        "# TYPE x counter\n# TYPE x counter\n",
        "node_cpu_usage_seconds_total 1 12.5x\n",
    ],
)
def test_malformed_input_raises(text):
    with pytest.raises(KubeletError):
        parse_metrics(text)


def test_urls_built_from_node_and_port():
    lister = KubeletPodLister("node-a", "1234", "/nonexistent")
    assert lister.pods_url == "https://node-a:1234/pods"
    assert lister.metrics_url == "https://node-a:1234/metrics/resource"


def test_urls_default_from_environment(monkeypatch):
    monkeypatch.delenv("NODE_IP", raising=False)
    monkeypatch.delenv("KUBELET_PORT", raising=False)
    lister = KubeletPodLister(token_path="/nonexistent")
    assert lister.pods_url == "https://localhost:10250/pods"


def test_missing_token_raises(tmp_path):
    lister = KubeletPodLister("node", "1", str(tmp_path / "absent"))
    with pytest.raises(KubeletError):
        lister.list_pods()


class _FakeResponse:
    def __init__(self, body, status=200):
        self._body = body
        self.status = status

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


@pytest.fixture
def token_file(tmp_path):
    path = tmp_path / "token"
    path.write_text("token")
    return str(path)


def test_list_pods_sends_bearer_and_returns_items(token_file):
    body = json.dumps({"items": [{"metadata": {"name": "busybox"}}]}).encode()
    with mock.patch("urllib.request.urlopen", return_value=_FakeResponse(body)) as urlopen:
        pods = KubeletPodLister("node", "10250", token_file).list_pods()
    assert pods == [{"metadata": {"name": "busybox"}}]
    request = urlopen.call_args.args[0]
    assert request.get_header("Authorization") == "Bearer token"
    assert request.full_url == "https://node:10250/pods"


def test_list_pods_bad_json_raises(token_file):
    with mock.patch("urllib.request.urlopen", return_value=_FakeResponse(b"{not json")):
        with pytest.raises(KubeletError):
            KubeletPodLister("node", "10250", token_file).list_pods()


def test_list_metrics_parses_body(token_file):
    with mock.patch("urllib.request.urlopen",
                    return_value=_FakeResponse(LIST_METRICS_OUTPUT.encode())):
        cpu, _ = KubeletPodLister("node", "10250", token_file).list_metrics()
    assert cpu["default/busybox/busybox"] == 0.035062


def test_available_metrics_when_reachable(token_file):
    lister = KubeletPodLister("node", "10250", token_file)
    with mock.patch("urllib.request.urlopen", return_value=_FakeResponse(b"")) as urlopen:
        first = lister.available_metrics()
        second = lister.available_metrics()
    assert first == ["kubelet_cpu_usage", "kubelet_memory_bytes"]
    assert second == first
    assert urlopen.call_count == 1


def test_available_metrics_when_unreachable(tmp_path):
    lister = KubeletPodLister("node", "10250", str(tmp_path / "absent"))
    assert lister.available_metrics() == []


def test_available_metrics_non_ok_status(token_file):
    lister = KubeletPodLister("node", "10250", token_file)
    with mock.patch("urllib.request.urlopen", return_value=_FakeResponse(b"", status=204)):
        assert lister.available_metrics() == []