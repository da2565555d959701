"""Names of the usage and energy metrics shared across the exporter."""

# hardware counters
CPU_CYCLE = "cpu_cycles"
CPU_REF_CYCLE = "cpu_ref_cycles"
CPU_INSTRUCTION = "cpu_instructions"
CACHE_MISS = "cache_miss"

# BPF statistics
CPU_TIME = "bpf_cpu_time_us"
PAGE_CACHE_HIT = "bpf_page_cache_hit"
IRQ_NET_TX_LABEL = "bpf_net_tx_irq"
IRQ_NET_RX_LABEL = "bpf_net_rx_irq"
IRQ_BLOCK_LABEL = "bpf_block_irq"

# cgroup file system statistics
CGROUPFS_MEMORY = "cgroupfs_memory_usage_bytes"
CGROUPFS_KERNEL_MEMORY = "cgroupfs_kernel_memory_usage_bytes"
CGROUPFS_TCP_MEMORY = "cgroupfs_tcp_memory_usage_bytes"
CGROUPFS_CPU = "cgroupfs_cpu_usage_us"
CGROUPFS_SYSTEM_CPU = "cgroupfs_system_cpu_usage_us"
CGROUPFS_USER_CPU = "cgroupfs_user_cpu_usage_us"
CGROUPFS_READ_IO = "cgroupfs_ioread_bytes"
CGROUPFS_WRITE_IO = "cgroupfs_iowrite_bytes"
BYTES_READ_IO = "bytes_read"
BYTES_WRITE_IO = "bytes_writes"
BLOCK_DEVICES_IO = "block_devices_used"

# kubelet
KUBELET_CPU_USAGE = "kubelet_cpu_usage"
KUBELET_MEMORY_USAGE = "kubelet_memory_bytes"
KUBELET_CONTAINER_CPU = "container_cpu_usage_seconds_total"
KUBELET_CONTAINER_MEMORY = "container_memory_working_set_bytes"
KUBELET_NODE_CPU = "node_cpu_usage_seconds_total"
KUBELET_NODE_MEMORY = "node_memory_working_set_bytes"

# system
CPU_FREQUENCY = "avg_cpu_frequency"

# GPU
GPU_SM_UTILIZATION = "gpu_sm_util"
GPU_MEM_UTILIZATION = "gpu_mem_util"

# metric suffixes
AGGREGATED_USAGE_SUFFIX = "total"
AGGREGATED_ENERGY_SUFFIX = "joules_total"