[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kepler-energy"
version = "0.1.0"
description = "Energy attribution helpers for processes, virtual machines and Kubernetes containers, with Prometheus metric descriptions"
requires-python = ">=3.10"
dependencies = []
keywords = ["energy", "power", "prometheus", "kubernetes", "kubelet", "libvirt", "monitoring", "rapl"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kepler_energy"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
