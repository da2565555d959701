"""Prometheus metric descriptions and samples for per-VM energy and usage."""

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

SUBSYSTEM = "vm"
# OpenStack instance names are 17 characters long.
NAME_LEN_LIMIT = 17

_ENERGY_LABELS = ("pid", "name", "mode")
_USAGE_LABELS = ("pid", "name")

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


def vm_descs(namespace: str = NAMESPACE) -> dict[str, MetricDesc]:
    """Return every VM metric description, keyed by its name without prefix."""
    return {
        name: MetricDesc(build_fq_name(namespace, SUBSYSTEM, name), help_text, labels)
        for name, help_text, labels in _SPECS
    }


def describe_vm(exposure: Exposure | None = None, namespace: str = NAMESPACE) -> list[MetricDesc]:
    """Return the descriptions of the VM metrics that ``exposure`` enables."""
    exposure = exposure or Exposure()
    descs = vm_descs(namespace)
    names = [key for _, key in _COMPONENT_DESCS]
    if exposure.gpu:
        names.append("gpu_joules_total")
    names.append("joules_total")
    if exposure.hardware_counters:
        names.extend(key for _, key in _HARDWARE_COUNTERS)
    if exposure.irq_counters:
        names.extend(key for _, key in _IRQ_COUNTERS)
    return [descs[name] for name in names]


def _name_label(name: str) -> str:
    raw = name.encode("utf-8", errors="surrogatepass")[:NAME_LEN_LIMIT]
    return raw.decode("utf-8", errors="ignore")


def _joules(millijoules: float) -> float:
    return float(millijoules) / MILLIJOULE_TO_JOULE


def _samples_for(
    pid: int, vm: WorkloadMetrics, exposure: Exposure, descs: Mapping[str, MetricDesc]
) -> Iterator[Sample]:
    name = _name_label(vm.name)
    pid_str = str(pid)
    stats = vm.bpf_stats
    dynamic = vm.dynamic_energy
    idle = vm.idle_energy

    if metric_names.CPU_TIME in stats:
        yield Sample(descs["cpu_cpu_time_us"], float(stats[metric_names.CPU_TIME]), (pid_str, name), COUNTER)

    components = list(_COMPONENT_DESCS)
    if exposure.gpu:
        components.append((GPU, "gpu_joules_total"))
    for component, key in components:
        yield Sample(descs[key], _joules(dynamic.get(component, 0)), (pid_str, name, "dynamic"), COUNTER)
        yield Sample(descs[key], _joules(idle.get(component, 0)), (pid_str, name, "idle"), COUNTER)

    for mode, energy in (("dynamic", dynamic), ("idle", idle)):
        total = sum(_joules(energy.get(component, 0)) for component in _TOTAL_COMPONENTS)
        yield Sample(descs["joules_total"], total, (pid_str, name, mode), COUNTER)

    optional = []
    if exposure.hardware_counters:
        optional.extend(_HARDWARE_COUNTERS)
    if exposure.irq_counters:
        optional.extend(_IRQ_COUNTERS)
    for stat, key in optional:
        if stat in stats:
            yield Sample(descs[key], float(stats[stat]), (pid_str, name), COUNTER)


def vm_samples(
    vms: Mapping[int, WorkloadMetrics],
    exposure: Exposure | None = None,
    namespace: str = NAMESPACE,
) -> Iterator[Sample]:
    """Yield the samples of every VM; energy is converted from millijoules to joules.

    The name label is cut to its first seventeen bytes.
    """
    exposure = exposure or Exposure()
    descs = vm_descs(namespace)
    for pid, vm in vms.items():
        yield from _samples_for(pid, vm, exposure, descs)