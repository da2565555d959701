"""Settings, kubelet and libvirt helpers, pod-event tracking and Prometheus metric descriptions for attributing energy to processes, VMs and containers."""

__version__ = "0.1.0"