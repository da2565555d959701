"""Prometheus metric descriptions and samples for per-process energy and usage."""

from __future__ import annotations

from collections.abc import Iterator, Mapping

from kepler_energy import metric_names
from kepler_energy.workloads import (
    CORE,
    COUNTER,
    DRAM,
    GPU,
    MILLIJOULE_TO_JOULE,
    NAMESPACE,
    OTHER,
    PACKAGE,
    UNCORE,
    Exposure,
    MetricDesc,
    Sample,
    WorkloadMetrics,
    build_fq_name,
)

SUBSYSTEM = "process"
COMMAND_LEN_LIMIT = 10

_ENERGY_LABELS = ("pid", "command", "mode")
_USAGE_LABELS = ("pid", "command")

# Energy components in the order they are exported, with the desc key of each.
_COMPONENT_DESCS = (
    (CORE, "core_joules_total"),
    (UNCORE, "uncore_joules_total"),
    (DRAM, "dram_joules_total"),
    (PACKAGE, "package_joules_total"),
    (OTHER, "other_host_components_joules_total"),
)
# Components summed into the total; core is part of the package and is left out.
_TOTAL_COMPONENTS = (PACKAGE, UNCORE, DRAM, GPU, OTHER)

_HARDWARE_COUNTERS = (
    (metric_names.CPU_CYCLE, "cpu_cycles_total"),
    (metric_names.CPU_INSTRUCTION, "cpu_instructions_total"),
    (metric_names.CACHE_MISS, "cache_miss_total"),
)
_IRQ_COUNTERS = (
    (metric_names.IRQ_NET_TX_LABEL, "bpf_net_tx_irq_total"),
    (metric_names.IRQ_NET_RX_LABEL, "bpf_net_rx_irq_total"),
    (metric_names.IRQ_BLOCK_LABEL, "bpf_block_irq_total"),
)

_SPECS: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    ("core_joules_total", "Aggregated RAPL value in core in joules", _ENERGY_LABELS),
    ("uncore_joules_total", "Aggregated RAPL value in uncore in joules", _ENERGY_LABELS),
    ("dram_joules_total", "Aggregated RAPL value in dram in joules", _ENERGY_LABELS),
    ("package_joules_total", "Aggregated RAPL value in package (socket) in joules", _ENERGY_LABELS),
    (
        "other_host_components_joules_total",
        "Aggregated value in other host components (platform - package - dram) in joules",
        _ENERGY_LABELS,
    ),
    ("gpu_joules_total", "Aggregated GPU value in joules", _ENERGY_LABELS),
    (
        "joules_total",
        "Aggregated RAPL Package + Uncore + DRAM + GPU + other host components "
        "(platform - package - dram) in joules",
        _ENERGY_LABELS,
    ),
    ("cpu_cycles_total", "Aggregated CPU cycle value", _USAGE_LABELS),
    ("cpu_instructions_total", "Aggregated CPU instruction value", _USAGE_LABELS),
    ("cache_miss_total", "Aggregated cache miss value", _USAGE_LABELS),
    ("cpu_cpu_time_us", "Aggregated CPU time", _USAGE_LABELS),
    ("bpf_net_tx_irq_total", "Aggregated network tx irq value obtained from BPF", _USAGE_LABELS),
    ("bpf_net_rx_irq_total", "Aggregated network rx irq value obtained from BPF", _USAGE_LABELS),
    ("bpf_block_irq_total", "Aggregated block irq value obtained from BPF", _USAGE_LABELS),
)


def process_descs(namespace: str = NAMESPACE) -> dict[str, MetricDesc]:
    """Return every process metric description, keyed by its name without prefix."""
    return {
        name: MetricDesc(build_fq_name(namespace, SUBSYSTEM, name), help_text, labels)
        for name, help_text, labels in _SPECS
    }


def describe_process(exposure: Exposure | None = None, namespace: str = NAMESPACE) -> list[MetricDesc]:
    """Return the descriptions of the process metrics that ``exposure`` enables."""
    exposure = exposure or Exposure()
    descs = process_descs(namespace)
    names = [key for _, key in _COMPONENT_DESCS]
    if exposure.gpu:
        names.append("gpu_joules_total")
    names.append("joules_total")
    if exposure.hardware_counters:
        names.extend(key for _, key in _HARDWARE_COUNTERS)
    if exposure.irq_counters:
        names.extend(key for _, key in _IRQ_COUNTERS)
    return [descs[name] for name in names]


def _command_label(command: str) -> str:
    raw = command.encode("utf-8", errors="surrogatepass")[:COMMAND_LEN_LIMIT]
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return ""


def _joules(millijoules: float) -> float:
    return float(millijoules) / MILLIJOULE_TO_JOULE


def _samples_for(
    pid: int, process: WorkloadMetrics, exposure: Exposure, descs: Mapping[str, MetricDesc]
) -> Iterator[Sample]:
    command = _command_label(process.name)
    pid_str = str(pid)
    stats = process.bpf_stats
    dynamic = process.dynamic_energy
    idle = process.idle_energy

    if metric_names.CPU_TIME in stats:
        yield Sample(descs["cpu_cpu_time_us"], float(stats[metric_names.CPU_TIME]), (pid_str, command), COUNTER)

    components = list(_COMPONENT_DESCS)
    if exposure.gpu:
        components.append((GPU, "gpu_joules_total"))
    for component, key in components:
        yield Sample(descs[key], _joules(dynamic.get(component, 0)), (pid_str, command, "dynamic"), COUNTER)
        yield Sample(descs[key], _joules(idle.get(component, 0)), (pid_str, command, "idle"), COUNTER)

    for mode, energy in (("dynamic", dynamic), ("idle", idle)):
        total = sum(_joules(energy.get(component, 0)) for component in _TOTAL_COMPONENTS)
        yield Sample(descs["joules_total"], total, (pid_str, command, mode), COUNTER)

    optional = []
    if exposure.hardware_counters:
        optional.extend(_HARDWARE_COUNTERS)
    if exposure.irq_counters:
        optional.extend(_IRQ_COUNTERS)
    for stat, key in optional:
        if stat in stats:
            yield Sample(descs[key], float(stats[stat]), (pid_str, command), COUNTER)


def process_samples(
    processes: Mapping[int, WorkloadMetrics],
    exposure: Exposure | None = None,
    namespace: str = NAMESPACE,
) -> Iterator[Sample]:
    """Yield the samples of every process; energy is converted from millijoules to joules.

    The command label is cut to its first ten bytes and left empty when the cut
    leaves invalid UTF-8.
    """
    exposure = exposure or Exposure()
    descs = process_descs(namespace)
    for pid, process in processes.items():
        yield from _samples_for(pid, process, exposure, descs)