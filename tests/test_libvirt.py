import pytest

from kepler_energy.libvirt import get_current_vm_pid

THREADS = {
    "1234": ["123", "456", "789"],
    "5678": ["1234", "4567", "7890"],
}


@pytest.fixture
def libvirt_dir(tmp_path):
    directory = tmp_path / "libvirt"
    directory.mkdir()
    (directory / "vm1.pid").write_text("1234")
    (directory / "vm2.pid").write_text("5678")
    return directory


@pytest.fixture
def proc_template(tmp_path):
    root = tmp_path / "procroot"
    for pid, tids in THREADS.items():
        for tid in tids:
            (root / "proc" / pid / "task" / tid).mkdir(parents=True)
    return str(root / "proc" / "%s" / "task")


def test_get_current_vm_pid(libvirt_dir, proc_template):
    result = get_current_vm_pid(str(libvirt_dir), proc_template)
    assert result == {
        "123": "vm1",
        "456": "vm1",
        "789": "vm1",
        "1234": "vm2",
        "4567": "vm2",
        "7890": "vm2",
    }


def test_non_pid_files_and_directories_are_ignored(libvirt_dir, proc_template):
    (libvirt_dir / "vm3.xml").write_text("1234")
    (libvirt_dir / "sub.pid").mkdir()
    result = get_current_vm_pid(str(libvirt_dir), proc_template)
    assert set(result.values()) == {"vm1", "vm2"}
    assert len(result) == 6


def test_vm_without_threads_yields_nothing(tmp_path, proc_template):
    directory = tmp_path / "other"
    directory.mkdir()
    (directory / "ghost.pid").write_text("9999")
    assert get_current_vm_pid(str(directory), proc_template) == {}


def test_missing_libvirt_dir_raises(tmp_path, proc_template):
    with pytest.raises(FileNotFoundError):
        get_current_vm_pid(str(tmp_path / "absent"), proc_template)