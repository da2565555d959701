"""Runtime settings read from the environment or from a directory of config files."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from kepler_energy import metric_names

_log = logging.getLogger(__name__)

CGROUP_ID_MIN_KERNEL_VERSION = 4.18
CGROUP_V2_PATH = "/sys/fs/cgroup/cgroup.controllers"
CONFIG_PATH = "/etc/kepler/kepler.config"

DEFAULT_METRIC_VALUE = ""
DEFAULT_NAMESPACE = "kepler"
DEFAULT_MODEL_SERVER_PORT = "8100"
DEFAULT_MODEL_REQUEST_PATH = "/model"
DEFAULT_MAX_LOOKUP_RETRY = 500
DEFAULT_SAMPLE_PERIOD_SEC = 3
DEFAULT_REDFISH_PROBE_INTERVAL = 60
MAX_IRQ = 10

METRIC_PATH_KEY = "METRIC_PATH"
BIND_ADDRESS_KEY = "BIND_ADDRESS"

# model parameter prefixes
NODE_PLATFORM_POWER_KEY = "NODE_TOTAL"
NODE_COMPONENTS_POWER_KEY = "NODE_COMPONENTS"
CONTAINER_PLATFORM_POWER_KEY = "CONTAINER_TOTAL"
CONTAINER_COMPONENTS_POWER_KEY = "CONTAINER_COMPONENTS"
PROCESS_PLATFORM_POWER_KEY = "PROCESS_TOTAL"
PROCESS_COMPONENTS_POWER_KEY = "PROCESS_COMPONENTS"

# model parameter attributes
RATIO_ENABLED_KEY = "RATIO"
ESTIMATOR_ENABLED_KEY = "ESTIMATOR"
LINEAR_REGRESSION_ENABLED_KEY = "LINEAR_REGRESSION"
INIT_MODEL_URL_KEY = "INIT_URL"
FIXED_TRAINER_NAME_KEY = "TRAINER"
FIXED_NODE_TYPE_KEY = "NODE_TYPE"
MODEL_FILTERS_KEY = "FILTERS"

_VERSION_RE = re.compile(r"^(\d+)\.(\d+).")
_INT_RE = re.compile(r"[+-]?[0-9]+")


class SystemClient:
    """Access to the host facts the settings depend on."""

    def uname_release(self) -> str:
        """Return the kernel release string."""
        return os.uname().release

    def cgroup_v2_file(self) -> str:
        """Return the file whose presence marks cgroup v2."""
        return CGROUP_V2_PATH


def _atoi(text: str) -> int | None:
    if _INT_RE.fullmatch(text):
        return int(text)
    return None


def get_config(key: str, default: str, config_path: str = CONFIG_PATH) -> str:
    """Return the environment value of ``key``, else the file ``config_path/key``, else ``default``."""
    if key in os.environ:
        return os.environ[key]
    try:
        return (Path(config_path) / key).read_text()
    except (OSError, UnicodeDecodeError):
        return default


def get_bool_config(key: str, default: bool, config_path: str = CONFIG_PATH) -> bool:
    """Return True when the configured value is ``true``, ignoring case."""
    return get_config(key, "true" if default else "false", config_path).lower() == "true"


def get_int_config(key: str, default: int, config_path: str = CONFIG_PATH) -> int:
    """Return the configured integer, or ``default`` when it is not a valid integer."""
    value = _atoi(get_config(key, str(default), config_path))
    return default if value is None else value


def get_kernel_version(client: SystemClient | None = None) -> float:
    """Return ``major.minor`` of the running kernel, or -1 when it cannot be parsed."""
    client = client or SystemClient()
    try:
        release = client.uname_release()
    except OSError:
        _log.debug("failed to parse unix name")
        return -1.0
    release = release.split("\0", 1)[0]
    match = _VERSION_RE.match(release)
    if not match:
        _log.info("got invalid release version %r (expected format '4.3-1 or 4.3.2-1')", release)
        return -1.0
    major, minor = int(match.group(1)), int(match.group(2))
    return float(f"{major}.{minor}")


def is_cgroup_v2(client: SystemClient | None = None) -> bool:
    """Return True unless the cgroup v2 marker file is missing."""
    client = client or SystemClient()
    try:
        os.stat(client.cgroup_v2_file())
    except FileNotFoundError:
        return False
    except OSError:
        return True
    return True


def get_cgroup_version(client: SystemClient | None = None) -> int:
    """Return 2 on cgroup v2 hosts and 1 otherwise."""
    client = client or SystemClient()
    marker = client.cgroup_v2_file()
    if is_cgroup_v2(client):
        _log.debug("found %s, using cgroup v2", marker)
        return 2
    _log.debug("%s is missing, using cgroup v1", marker)
    return 1


def get_model_config_map(config_path: str = CONFIG_PATH) -> dict[str, str]:
    """Parse ``MODEL_CONFIG`` as whitespace-separated ``key=value`` pairs."""
    config_map: dict[str, str] = {}
    for item in get_config("MODEL_CONFIG", "", config_path).split():
        parts = item.split("=")
        if len(parts) == 2:
            config_map[parts[0]] = parts[1]
    return config_map


def model_server_request_endpoint(namespace: str = DEFAULT_NAMESPACE, config_path: str = CONFIG_PATH) -> str:
    """Return the URL used to request power models from the model server."""
    service = f"kepler-model-server.{namespace}.svc.cluster.local"
    url = get_config("MODEL_SERVER_URL", service, config_path)
    if url == service:
        port = get_config("MODEL_SERVER_PORT", DEFAULT_MODEL_SERVER_PORT, config_path)
        port = port.removesuffix("\n")
        url = f"http://{url}:{port}"
    return url + get_config("MODEL_SERVER_MODEL_REQ_PATH", DEFAULT_MODEL_REQUEST_PATH, config_path)


def default_power_model_url(model_output_type: str, energy_source: str) -> str:
    """Return the local path of a power model's weights."""
    return f"/var/lib/kepler/data/{energy_source}_{model_output_type}Model.json"


def get_metric_path(default: str, config_path: str = CONFIG_PATH) -> str:
    """Return the configured metrics path, falling back to ``default``."""
    return get_config(METRIC_PATH_KEY, default, config_path)


def get_bind_address(default: str, config_path: str = CONFIG_PATH) -> str:
    """Return the configured bind address, falling back to ``default``."""
    return get_config(BIND_ADDRESS_KEY, default, config_path)


@dataclass
class Settings:
    """The exporter's settings; defaults match an empty environment."""

    kepler_namespace: str = DEFAULT_NAMESPACE
    enabled_msr: bool = False
    enabled_bpf_batch_delete: bool = True
    kernel_version: float = 0.0
    use_libbpf_attacher: bool = False
    enabled_ebpf_cgroup_id: bool = True
    enabled_gpu: bool = False
    enabled_qat: bool = False
    enable_process_metrics: bool = False
    expose_hardware_counter_metrics: bool = True
    expose_cgroup_metrics: bool = True
    expose_kubelet_metrics: bool = True
    expose_irq_counter_metrics: bool = True
    expose_idle_power_metrics: bool = False
    cpu_arch_override: str = ""
    max_lookup_retry: int = DEFAULT_MAX_LOOKUP_RETRY
    bpf_sample_rate: int = 0
    estimator_model: str = DEFAULT_METRIC_VALUE
    estimator_select_filter: str = DEFAULT_METRIC_VALUE
    core_usage_metric: str = metric_names.CPU_INSTRUCTION
    dram_usage_metric: str = metric_names.CACHE_MISS
    uncore_usage_metric: str = DEFAULT_METRIC_VALUE
    gpu_usage_metric: str = metric_names.GPU_SM_UTILIZATION
    general_usage_metric: str = DEFAULT_METRIC_VALUE
    sample_period_sec: int = DEFAULT_SAMPLE_PERIOD_SEC
    kernel_source_dirs: list[str] = field(default_factory=list)
    redfish_cred_file_path: str = ""
    redfish_probe_interval: str = str(DEFAULT_REDFISH_PROBE_INTERVAL)
    redfish_skip_ssl_verify: bool = True
    model_server_enable: bool = False
    model_server_endpoint: str = ""
    model_config_values: dict[str, str] = field(default_factory=dict)
    kube_config: str = ""
    enable_api_server: bool = False

    @classmethod
    def from_env(cls, config_path: str = CONFIG_PATH) -> Settings:
        """Build settings from environment variables and files under ``config_path``."""
        namespace = get_config("KEPLER_NAMESPACE", DEFAULT_NAMESPACE, config_path)

        def text(key: str, default: str) -> str:
            return get_config(key, default, config_path)

        def flag(key: str, default: bool) -> bool:
            return get_bool_config(key, default, config_path)

        def number(key: str, default: int) -> int:
            return get_int_config(key, default, config_path)

        settings = cls(
            kepler_namespace=namespace,
            enabled_ebpf_cgroup_id=flag("ENABLE_EBPF_CGROUPID", True),
            enabled_gpu=flag("ENABLE_GPU", False),
            enabled_qat=flag("ENABLE_QAT", False),
            enable_process_metrics=flag("ENABLE_PROCESS_METRICS", False),
            expose_hardware_counter_metrics=flag("EXPOSE_HW_COUNTER_METRICS", True),
            expose_cgroup_metrics=flag("EXPOSE_CGROUP_METRICS", True),
            expose_kubelet_metrics=flag("EXPOSE_KUBELET_METRICS", True),
            expose_irq_counter_metrics=flag("EXPOSE_IRQ_COUNTER_METRICS", True),
            expose_idle_power_metrics=flag("EXPOSE_ESTIMATED_IDLE_POWER_METRICS", False),
            cpu_arch_override=text("CPU_ARCH_OVERRIDE", ""),
            max_lookup_retry=number("MAX_LOOKUP_RETRY", DEFAULT_MAX_LOOKUP_RETRY),
            bpf_sample_rate=number("EXPERIMENTAL_BPF_SAMPLE_RATE", 0),
            estimator_model=text("ESTIMATOR_MODEL", DEFAULT_METRIC_VALUE),
            estimator_select_filter=text("ESTIMATOR_SELECT_FILTER", DEFAULT_METRIC_VALUE),
            core_usage_metric=text("CORE_USAGE_METRIC", metric_names.CPU_INSTRUCTION),
            dram_usage_metric=text("DRAM_USAGE_METRIC", metric_names.CACHE_MISS),
            uncore_usage_metric=text("UNCORE_USAGE_METRIC", DEFAULT_METRIC_VALUE),
            gpu_usage_metric=text("GPU_USAGE_METRIC", metric_names.GPU_SM_UTILIZATION),
            general_usage_metric=text("GENERAL_USAGE_METRIC", DEFAULT_METRIC_VALUE),
            sample_period_sec=number("SAMPLE_PERIOD_SEC", DEFAULT_SAMPLE_PERIOD_SEC),
            redfish_probe_interval=text("REDFISH_PROBE_INTERVAL_IN_SECONDS", str(DEFAULT_REDFISH_PROBE_INTERVAL)),
            redfish_skip_ssl_verify=flag("REDFISH_SKIP_SSL_VERIFY", True),
            model_server_enable=flag("MODEL_SERVER_ENABLE", False),
            model_server_endpoint=model_server_request_endpoint(namespace, config_path),
            model_config_values=get_model_config_map(config_path),
        )
        settings._log_bool_configs()
        return settings

    def _log_bool_configs(self) -> None:
        for name in (
            "enabled_ebpf_cgroup_id", "enabled_gpu", "enabled_qat", "enable_process_metrics",
            "expose_hardware_counter_metrics", "expose_cgroup_metrics", "expose_kubelet_metrics",
            "expose_irq_counter_metrics", "expose_idle_power_metrics", "bpf_sample_rate",
        ):
            _log.debug("%s: %s", name, getattr(self, name))

    def enable_ebpf_cgroup_id(self, enabled: bool, client: SystemClient | None = None) -> None:
        """Use cgroup ids in BPF only if asked, the kernel is at least 4.18 and cgroup v2 is in use."""
        enabled = enabled and self.enabled_ebpf_cgroup_id
        _log.info("using cgroup ID in the BPF program: %s", enabled)
        self.kernel_version = get_kernel_version(client)
        _log.info("kernel version: %s", self.kernel_version)
        self.enabled_ebpf_cgroup_id = bool(
            enabled and self.kernel_version >= CGROUP_ID_MIN_KERNEL_VERSION and is_cgroup_v2(client)
        )

    def enable_hardware_counter_metrics(self, enabled: bool) -> None:
        """Disable hardware counter metrics if any source disables them."""
        self.expose_hardware_counter_metrics = enabled and self.expose_hardware_counter_metrics

    def enable_idle_power(self, enabled: bool) -> None:
        """Expose idle power if any source enables it."""
        self.expose_idle_power_metrics = enabled or self.expose_idle_power_metrics
        if self.expose_idle_power_metrics:
            _log.info("The idle power will be exposed. Are you running on bare metal or using a single VM per node?")

    def enable_gpu(self, enabled: bool) -> None:
        """Expose GPU metrics if any source enables them."""
        self.enabled_gpu = enabled or self.enabled_gpu

    def enable_qat(self, enabled: bool) -> None:
        """Expose QAT metrics if any source enables them."""
        self.enabled_qat = enabled or self.enabled_qat

    def set_kernel_source_dir(self, directory: str) -> None:
        """Record every subdirectory of ``directory`` as a kernel source directory."""
        path = Path(directory)
        path.stat()
        if not path.is_dir():
            raise NotADirectoryError(f"expected kernel root path {directory} to be a directory")
        _log.info("kernel source dir is set to %s", directory)
        try:
            entries = sorted(path.iterdir(), key=lambda p: p.name)
        except OSError as err:
            _log.warning("failed to read kernel source dir: %s", err)
            return
        self.kernel_source_dirs.extend(str(path / entry.name) for entry in entries if entry.is_dir())

    def redfish_probe_interval_seconds(self) -> int:
        """Return the Redfish probe interval, 60 when it is not an integer."""
        value = _atoi(self.redfish_probe_interval)
        if value is None:
            _log.warning("failed to convert redfish probe interval %r to int", self.redfish_probe_interval)
            return DEFAULT_REDFISH_PROBE_INTERVAL
        return value

    def set_estimator(self, model_name: str, select_filter: str) -> None:
        """Set the estimator model and its selection filter."""
        self.estimator_model = model_name
        self.estimator_select_filter = select_filter