# kepler-energy

Building blocks for an energy exporter that attributes power use to
processes, virtual machines and Kubernetes containers, and describes the
results as Prometheus metrics. The package has no dependencies beyond the
standard library.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `kepler_energy.config`: settings read from environment variables, falling
  back to one file per key under a configuration directory (by default
  `/etc/kepler/kepler.config`). `Settings.from_env(config_path)` builds the
  full `Settings` object; its methods `enable_ebpf_cgroup_id`,
  `enable_hardware_counter_metrics`, `enable_idle_power`, `enable_gpu`,
  `enable_qat`, `set_kernel_source_dir`, `redfish_probe_interval_seconds` and
  `set_estimator` adjust it afterwards. Module-level helpers: `get_config`,
  `get_bool_config`, `get_int_config`, `get_kernel_version`, `is_cgroup_v2`,
  `get_cgroup_version`, `get_model_config_map`,
  `model_server_request_endpoint`, `default_power_model_url`,
  `get_metric_path` and `get_bind_address`. Host facts come from a
  `SystemClient`, which can be replaced in tests.
- `kepler_energy.metric_names`: names of the usage metrics (hardware
  counters, BPF statistics, cgroup and kubelet metrics) and metric suffixes.
- `kepler_energy.libvirt`: `get_current_vm_pid(libvirt_dir, proc_template)`
  reads every `*.pid` file in the libvirt directory and maps each thread id
  of that process to the VM name (the file name without `.pid`).
- `kepler_energy.kubelet`: `KubeletPodLister` calls the kubelet's `/pods` and
  `/metrics/resource` endpoints over HTTPS with the service-account token
  (`list_pods`, `list_metrics`, `available_metrics`); failures raise
  `KubeletError`. `parse_metrics(text)` turns Prometheus text-format output
  into per-container CPU and memory maps keyed `namespace/pod/container`,
  plus a `system/system_processes` entry holding the node total minus the
  containers' sum.
- `kepler_energy.watcher`: `PodWatcher` applies pod add, update and delete
  events (pods as decoded JSON objects) to a shared map of container id to
  `ContainerInfo`, guarded by a lock. `parse_container_id` removes the
  runtime prefix (`containerd://`, `docker://`, ...) from an id.
- `kepler_energy.workloads`: `WorkloadRegistry` holds per-process and per-VM
  `WorkloadMetrics` (`ensure_process`, `ensure_vm`). `MetricDesc` and `Sample`
  describe exported series, `Exposure` says which optional metric groups are
  switched on, and `build_fq_name` / `add_suffix` build metric names.
- `kepler_energy.process_exporter` and `kepler_energy.vm_exporter`:
  `process_descs` / `vm_descs` list every metric description,
  `describe_process` / `describe_vm` list those enabled by an `Exposure`, and
  `process_samples` / `vm_samples` yield the samples, converting energy from
  millijoules to joules. Process command labels are cut to 10 bytes, VM name
  labels to 17.

## Examples

```python
from kepler_energy.kubelet import parse_metrics

with open("metrics.txt") as handle:
    cpu, memory = parse_metrics(handle.read())
for container, seconds in cpu.items():
    print(container, seconds)
```

```python
from kepler_energy.libvirt import get_current_vm_pid

threads = get_current_vm_pid("/var/run/libvirt/qemu/", "/proc/%s/task")
```

```python
from kepler_energy.process_exporter import process_samples
from kepler_energy.workloads import Exposure, WorkloadRegistry

registry = WorkloadRegistry()
record = registry.ensure_process(42, "python3")
record.dynamic_energy["package"] = 1500
for sample in process_samples(registry.processes, Exposure(gpu=True)):
    print(sample.desc.fq_name, sample.label_values, sample.value)
```

## What this package does not do

- It has no command and no HTTP server: nothing serves a `/metrics`
  endpoint; the samples are returned for the caller to expose.
- It takes no energy or usage readings itself. It reads no RAPL, BPF,
  hardware-counter or GPU data, and runs no periodic collection loop; the
  values in `WorkloadMetrics` must be filled in by the caller.
- `PodWatcher` does not connect to the Kubernetes API server; the caller
  passes it the pod events.