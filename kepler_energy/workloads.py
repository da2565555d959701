"""Per-process and per-VM energy and usage records, and the metric types they are exported as."""

from __future__ import annotations

from dataclasses import dataclass, field

NAMESPACE = "kepler"
MILLIJOULE_TO_JOULE = 1000.0

CORE = "core"
UNCORE = "uncore"
DRAM = "dram"
PACKAGE = "package"
OTHER = "other"
GPU = "gpu"
COMPONENTS = (CORE, UNCORE, DRAM, PACKAGE, OTHER, GPU)

COUNTER = "counter"
GAUGE = "gauge"


def build_fq_name(namespace: str, subsystem: str, name: str) -> str:
    """Join the non-empty parts with underscores; an empty ``name`` gives an empty result."""
    if not name:
        return ""
    return "_".join(part for part in (namespace, subsystem, name) if part)


def add_suffix(name: str, suffix: str) -> str:
    """Return ``name`` followed by an underscore and ``suffix``."""
    return f"{name}_{suffix}"


@dataclass(frozen=True)
class MetricDesc:
    """A metric's fully qualified name, help text and label names."""

    fq_name: str
    help: str
    variable_labels: tuple[str, ...]


@dataclass(frozen=True)
class Sample:
    """One value of a metric with its label values."""

    desc: MetricDesc
    value: float
    label_values: tuple[str, ...]
    kind: str = COUNTER

    def __post_init__(self) -> None:
        if len(self.label_values) != len(self.desc.variable_labels):
            raise ValueError(
                f"{self.desc.fq_name}: expected {len(self.desc.variable_labels)} label values, "
                f"got {len(self.label_values)}"
            )


def _zero_energy() -> dict[str, int]:
    return dict.fromkeys(COMPONENTS, 0)


@dataclass
class WorkloadMetrics:
    """Aggregated energy (millijoules) and BPF statistics of a process or VM."""

    pid: int
    name: str = ""
    bpf_stats: dict[str, float] = field(default_factory=dict)
    dynamic_energy: dict[str, int] = field(default_factory=_zero_energy)
    idle_energy: dict[str, int] = field(default_factory=_zero_energy)


@dataclass(frozen=True)
class Exposure:
    """Which optional metric groups are exported."""

    gpu: bool = False
    hardware_counters: bool = False
    irq_counters: bool = True


@dataclass
class WorkloadRegistry:
    """The process and VM records known to the collector, keyed by pid."""

    processes: dict[int, WorkloadMetrics] = field(default_factory=dict)
    vms: dict[int, WorkloadMetrics] = field(default_factory=dict)

    @staticmethod
    def _ensure(table: dict[int, WorkloadMetrics], pid: int, name: str) -> WorkloadMetrics:
        record = table.get(pid)
        if record is None:
            record = table[pid] = WorkloadMetrics(pid, name)
        elif not record.name:
            record.name = name
        return record

    def ensure_process(self, pid: int, command: str) -> WorkloadMetrics:
        """Return the record of ``pid``, creating it or filling in a missing command."""
        return self._ensure(self.processes, pid, command)

    def ensure_vm(self, pid: int, name: str) -> WorkloadMetrics:
        """Return the VM record of ``pid``, creating it or filling in a missing name."""
        return self._ensure(self.vms, pid, name)