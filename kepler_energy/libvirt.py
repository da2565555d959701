"""Map the threads of libvirt-managed virtual machines to VM names."""

from __future__ import annotations

import logging
from pathlib import Path

LIBVIRT_PATH = "/var/run/libvirt/qemu/"
PROC_PATH = "/proc/%s/task"

_log = logging.getLogger(__name__)


def _thread_ids(pid: str, proc_template: str) -> list[str]:
    task_dir = Path(proc_template % pid)
    try:
        return sorted(entry.name for entry in task_dir.iterdir())
    except OSError:
        return []


def get_current_vm_pid(libvirt_dir: str = LIBVIRT_PATH, proc_template: str = PROC_PATH) -> dict[str, str]:
    """Return a mapping of thread id to VM name for every ``*.pid`` file in ``libvirt_dir``.

    ``proc_template`` holds one ``%s`` that is replaced by the VM's process id to
    find the directory listing its threads. Raises ``OSError`` when
    ``libvirt_dir`` cannot be read.
    """
    directory = Path(libvirt_dir)
    pid_files: dict[str, str] = {}
    for entry in sorted(directory.iterdir(), key=lambda p: p.name):
        if entry.is_dir() or entry.suffix != ".pid":
            continue
        try:
            pid = entry.read_text()
        except OSError as err:
            _log.warning("error reading %s: %s", entry, err)
            continue
        vm_name = entry.name[: -len(".pid")]
        for tid in _thread_ids(pid, proc_template):
            pid_files[tid] = vm_name
    return pid_files