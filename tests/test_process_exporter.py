import pytest

from kepler_energy import metric_names
from kepler_energy.process_exporter import describe_process, process_descs, process_samples
from kepler_energy.workloads import MILLIJOULE_TO_JOULE, Exposure, WorkloadMetrics


def _process(pid=42, name="worker", **energy):
    record = WorkloadMetrics(pid, name)
    for key, value in energy.items():
        mode, component = key.split("_", 1)
        target = record.dynamic_energy if mode == "dyn" else record.idle_energy
        target[component] = value
    return record


def _by(samples, fq_name, mode=None):
    return [
        s for s in samples
        if s.desc.fq_name == fq_name and (mode is None or s.label_values[-1] == mode)
    ]


def test_descs_names_and_labels():
    descs = process_descs()
    assert descs["core_joules_total"].fq_name == "kepler_process_core_joules_total"
    assert descs["other_host_components_joules_total"].fq_name == (
        "kepler_process_other_host_components_joules_total"
    )
    assert descs["joules_total"].variable_labels == ("pid", "command", "mode")
    assert descs["cpu_cycles_total"].variable_labels == ("pid", "command")


def test_descs_custom_namespace():
    descs = process_descs("acme")
    assert all(d.fq_name.startswith("acme_process_") for d in descs.values())


def test_describe_default_exposure():
    names = {d.fq_name for d in describe_process(Exposure())}
    assert "kepler_process_gpu_joules_total" not in names
    assert "kepler_process_cpu_cycles_total" not in names
    assert "kepler_process_bpf_net_tx_irq_total" in names
    assert "kepler_process_joules_total" in names


def test_describe_all_enabled_includes_optional():
    exposure = Exposure(gpu=True, hardware_counters=True, irq_counters=True)
    names = [d.fq_name for d in describe_process(exposure)]
    for expected in ("kepler_process_gpu_joules_total", "kepler_process_cache_miss_total",
                     "kepler_process_bpf_block_irq_total"):
        assert expected in names
    assert len(names) == len(set(names))


def test_energy_converted_to_joules():
    samples = list(process_samples({7: _process(7, dyn_core=1500, idle_core=250)}))
    dyn = _by(samples, "kepler_process_core_joules_total", "dynamic")
    idle = _by(samples, "kepler_process_core_joules_total", "idle")
    assert dyn[0].value * MILLIJOULE_TO_JOULE == pytest.approx(1500)
    assert idle[0].value * MILLIJOULE_TO_JOULE == pytest.approx(250)
    assert dyn[0].label_values == ("7", "worker", "dynamic")


def test_total_excludes_core_and_includes_gpu():
    proc = _process(dyn_core=9000, dyn_package=1000, dyn_uncore=200, dyn_dram=300,
                    dyn_other=400, dyn_gpu=500)
    samples = list(process_samples({42: proc}, Exposure(gpu=True)))
    total = _by(samples, "kepler_process_joules_total", "dynamic")[0].value
    parts = sum(
        _by(samples, f"kepler_process_{name}", "dynamic")[0].value
        for name in ("package_joules_total", "uncore_joules_total", "dram_joules_total",
                     "other_host_components_joules_total", "gpu_joules_total")
    )
    assert total == pytest.approx(parts)


def test_gpu_samples_only_when_enabled():
    proc = _process(dyn_gpu=500)
    off = list(process_samples({1: proc}, Exposure(gpu=False)))
    on = list(process_samples({1: proc}, Exposure(gpu=True)))
    assert _by(off, "kepler_process_gpu_joules_total") == []
    assert len(_by(on, "kepler_process_gpu_joules_total")) == 2
    total_off = _by(off, "kepler_process_joules_total", "dynamic")[0].value
    assert total_off * MILLIJOULE_TO_JOULE == pytest.approx(500)


def test_command_truncated():
    samples = list(process_samples({3: _process(3, "abcdefghijklmnop")}))
    assert {s.label_values[1] for s in samples} == {"abcdefghij"}


def test_command_cut_inside_character_is_emptied():
    name = "a" + "\u00e9" * 5
    samples = list(process_samples({3: _process(3, name)}))
    assert {s.label_values[1] for s in samples} == {""}


def test_hardware_counters_need_exposure_and_stats():
    proc = _process()
    proc.bpf_stats[metric_names.CPU_CYCLE] = 12345
    off = list(process_samples({1: proc}, Exposure(hardware_counters=False)))
    on = list(process_samples({1: proc}, Exposure(hardware_counters=True)))
    assert _by(off, "kepler_process_cpu_cycles_total") == []
    cycles = _by(on, "kepler_process_cpu_cycles_total")
    assert [s.value for s in cycles] == [12345.0]
    assert _by(on, "kepler_process_cache_miss_total") == []


def test_irq_and_cpu_time_samples():
    proc = _process()
    proc.bpf_stats[metric_names.IRQ_NET_RX_LABEL] = 8
    proc.bpf_stats[metric_names.CPU_TIME] = 77
    samples = list(process_samples({5: proc}, Exposure(irq_counters=True)))
    assert [s.value for s in _by(samples, "kepler_process_bpf_net_rx_irq_total")] == [8.0]
    assert [s.value for s in _by(samples, "kepler_process_cpu_cpu_time_us")] == [77.0]
    silent = list(process_samples({5: proc}, Exposure(irq_counters=False)))
    assert _by(silent, "kepler_process_bpf_net_rx_irq_total") == []


def test_samples_per_process():
    procs = {1: _process(1, "one"), 2: _process(2, "two")}
    samples = list(process_samples(procs))
    assert {s.label_values[0] for s in samples} == {"1", "2"}
    assert len(_by(samples, "kepler_process_joules_total")) == 4