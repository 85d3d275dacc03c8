#!/usr/bin/env python3
"""
Platform Facilities

The narrow capability interface through which Exaleipsis touches the
operating system outside the filesystem: restore checkpoints, external
uninstall commands, packaged-app removal, the registry, persistent
environment variables and running processes.

SystemFacilities defines the interface, WindowsFacilities implements it
with winreg, subprocess, ctypes and psutil. Tests substitute a fake.
"""

import fnmatch
import os
import shutil
import subprocess
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import psutil

from path_safety import normalize_registry_path

# winreg only exists on Windows; every registry call checks for it
try:
    import winreg
except ImportError:
    winreg = None


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external process invocation"""

    exit_code: Optional[int]
    timed_out: bool = False
    output: str = ""

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.exit_code == 0


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    name: str
    exe: str = ""


@dataclass(frozen=True)
class UninstallRecord:
    """One installed-program entry read from the registry

    Consumed, never owned: it goes stale as soon as an uninstaller runs.
    """

    display_name: str
    install_location: str
    raw_uninstall_command: str
    registry_handle: str


class EnvironmentScope(Enum):
    USER = "user"
    MACHINE = "machine"


ENVIRONMENT_KEYS = {
    EnvironmentScope.USER: r"HKCU\Environment",
    EnvironmentScope.MACHINE: r"HKLM\SYSTEM\CurrentControlSet\Control\Session Manager\Environment",
}

UNINSTALL_ROOTS = (
    r"HKLM\SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall",
    r"HKLM\SOFTWARE\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall",
    r"HKCU\Software\Microsoft\Windows\CurrentVersion\Uninstall",
)


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class SystemFacilities:
    """Capability interface used by the removal core"""

    # -- checkpoint / commands / packages ------------------------------------

    def create_checkpoint(self, description: str) -> bool:
        raise NotImplementedError

    def run_command(self, argv: list[str], timeout: float) -> CommandResult:
        raise NotImplementedError

    def list_packages(self, patterns: list[str]) -> list[str]:
        raise NotImplementedError

    def remove_package(self, package_name: str, timeout: float) -> CommandResult:
        raise NotImplementedError

    # -- registry ------------------------------------------------------------

    def registry_key_exists(self, path: str) -> bool:
        raise NotImplementedError

    def registry_value_exists(self, path: str) -> bool:
        raise NotImplementedError

    def delete_registry_key(self, path: str):
        raise NotImplementedError

    def delete_registry_value(self, path: str):
        raise NotImplementedError

    def list_uninstall_records(self, name_patterns: list[str]) -> list[UninstallRecord]:
        raise NotImplementedError

    # -- environment ---------------------------------------------------------

    def get_environment_variable(self, name: str, scope: EnvironmentScope) -> Optional[str]:
        raise NotImplementedError

    def set_environment_variable(self, name: str, value: str, scope: EnvironmentScope):
        raise NotImplementedError

    def delete_environment_variable(self, name: str, scope: EnvironmentScope):
        raise NotImplementedError

    # -- processes -----------------------------------------------------------

    def find_processes(self, names: list[str]) -> list[ProcessInfo]:
        raise NotImplementedError

    def terminate_process(self, pid: int, timeout: float) -> bool:
        raise NotImplementedError

    # -- misc ----------------------------------------------------------------

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)

    def free_space_bytes(self, path: str) -> int:
        return shutil.disk_usage(path).free

    def is_elevated(self) -> bool:
        raise NotImplementedError

    def sleep(self, seconds: float):
        time.sleep(seconds)


# ---------------------------------------------------------------------------
# Windows implementation
# ---------------------------------------------------------------------------

# Bound on reading leftover output once a timed-out command has been killed
DRAIN_TIMEOUT_SECONDS = 5


def _kill_process_tree(proc: subprocess.Popen):
    """Kill a child process and every descendant it spawned"""
    try:
        descendants = psutil.Process(proc.pid).children(recursive=True)
    except psutil.NoSuchProcess:
        descendants = []
    proc.kill()
    for child in descendants:
        try:
            child.kill()
        except psutil.NoSuchProcess:
            continue



def _split_registry_path(path: str):
    """Return (hive handle, subkey path) for 'HKLM\\SOFTWARE\\...'"""
    normalized = normalize_registry_path(path)
    hive_name, _, subkey = normalized.partition("\\")
    hives = {
        "HKLM": winreg.HKEY_LOCAL_MACHINE,
        "HKCU": winreg.HKEY_CURRENT_USER,
        "HKCR": winreg.HKEY_CLASSES_ROOT,
        "HKU": winreg.HKEY_USERS,
        "HKCC": winreg.HKEY_CURRENT_CONFIG,
    }
    if hive_name not in hives:
        raise ValueError(f"Unknown registry hive in {path!r}")
    return hives[hive_name], subkey


class WindowsFacilities(SystemFacilities):
    """Real Windows implementation of the capability interface"""

    POWERSHELL = ["powershell.exe", "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-Command"]

    def __init__(self, view_64bit: bool = True):
        self._view = winreg.KEY_WOW64_64KEY if (winreg and view_64bit) else 0

    # -- checkpoint / commands / packages ------------------------------------

    def create_checkpoint(self, description: str) -> bool:
        safe_description = description.replace("'", "''")
        result = self.run_command(
            self.POWERSHELL
            + [f"Checkpoint-Computer -Description '{safe_description}' -RestorePointType 'MODIFY_SETTINGS'"],
            timeout=600,
        )
        return result.succeeded

    def run_command(self, argv: list[str], timeout: float) -> CommandResult:
        """Launch a child process and wait for it, killing it on timeout"""
        try:
            proc = subprocess.Popen(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
            )
        except OSError as e:
            return CommandResult(exit_code=None, output=str(e))

        try:
            output, _ = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_process_tree(proc)
            try:
                output, _ = proc.communicate(timeout=DRAIN_TIMEOUT_SECONDS)
            except subprocess.TimeoutExpired:
                # a detached descendant still holds the pipe open
                proc.stdout.close()
                proc.wait()
                output = ""
            return CommandResult(exit_code=None, timed_out=True, output=output or "")
        return CommandResult(exit_code=proc.returncode, output=output or "")

    def list_packages(self, patterns: list[str]) -> list[str]:
        names: list[str] = []
        for pattern in patterns:
            safe_pattern = pattern.replace("'", "''")
            result = self.run_command(
                self.POWERSHELL
                + [f"Get-AppxPackage -Name '{safe_pattern}' | Select-Object -ExpandProperty PackageFullName"],
                timeout=120,
            )
            if not result.succeeded:
                continue
            for line in result.output.splitlines():
                line = line.strip()
                if line and line not in names:
                    names.append(line)
        return names

    def remove_package(self, package_name: str, timeout: float) -> CommandResult:
        safe_name = package_name.replace("'", "''")
        return self.run_command(self.POWERSHELL + [f"Remove-AppxPackage -Package '{safe_name}'"], timeout=timeout)

    # -- registry ------------------------------------------------------------

    def registry_key_exists(self, path: str) -> bool:
        if winreg is None:
            return False
        hive, subkey = _split_registry_path(path)
        try:
            with winreg.OpenKey(hive, subkey, 0, winreg.KEY_READ | self._view):
                return True
        except FileNotFoundError:
            return False

    def registry_value_exists(self, path: str) -> bool:
        if winreg is None:
            return False
        key_path, _, value_name = path.rpartition("\\")
        hive, subkey = _split_registry_path(key_path)
        try:
            with winreg.OpenKey(hive, subkey, 0, winreg.KEY_READ | self._view) as key:
                winreg.QueryValueEx(key, value_name)
                return True
        except FileNotFoundError:
            return False

    def delete_registry_key(self, path: str):
        """Delete a key and all of its subkeys"""
        hive, subkey = _split_registry_path(path)
        self._delete_key_tree(hive, subkey)

    def _delete_key_tree(self, hive, subkey: str):
        access = winreg.KEY_ALL_ACCESS | self._view
        with winreg.OpenKey(hive, subkey, 0, access) as key:
            while True:
                try:
                    child = winreg.EnumKey(key, 0)
                except OSError:
                    break
                self._delete_key_tree(hive, f"{subkey}\\{child}")
        winreg.DeleteKeyEx(hive, subkey, self._view, 0)

    def delete_registry_value(self, path: str):
        key_path, _, value_name = path.rpartition("\\")
        hive, subkey = _split_registry_path(key_path)
        with winreg.OpenKey(hive, subkey, 0, winreg.KEY_SET_VALUE | self._view) as key:
            winreg.DeleteValue(key, value_name)

    def list_uninstall_records(self, name_patterns: list[str]) -> list[UninstallRecord]:
        if winreg is None:
            return []
        records: list[UninstallRecord] = []
        lowered = [p.lower() for p in name_patterns]
        for root in UNINSTALL_ROOTS:
            hive, subkey = _split_registry_path(root)
            try:
                root_key = winreg.OpenKey(hive, subkey, 0, winreg.KEY_READ | self._view)
            except FileNotFoundError:
                continue
            with root_key:
                index = 0
                while True:
                    try:
                        child = winreg.EnumKey(root_key, index)
                    except OSError:
                        break
                    index += 1
                    values = self._read_values(root_key, child)
                    name = values.get("DisplayName", "")
                    if not name or not any(fnmatch.fnmatch(name.lower(), p) for p in lowered):
                        continue
                    records.append(
                        UninstallRecord(
                            display_name=name,
                            install_location=values.get("InstallLocation", ""),
                            raw_uninstall_command=values.get("UninstallString", ""),
                            registry_handle=f"{root}\\{child}",
                        )
                    )
        return records

    def _read_values(self, parent, child: str) -> dict[str, str]:
        values: dict[str, str] = {}
        try:
            with winreg.OpenKey(parent, child) as key:
                for name in ("DisplayName", "InstallLocation", "UninstallString"):
                    try:
                        values[name] = str(winreg.QueryValueEx(key, name)[0] or "")
                    except FileNotFoundError:
                        continue
        except OSError:
            pass
        return values

    # -- environment ---------------------------------------------------------

    def get_environment_variable(self, name: str, scope: EnvironmentScope) -> Optional[str]:
        if winreg is None:
            return None
        hive, subkey = _split_registry_path(ENVIRONMENT_KEYS[scope])
        try:
            with winreg.OpenKey(hive, subkey, 0, winreg.KEY_READ) as key:
                value, _ = winreg.QueryValueEx(key, name)
        except FileNotFoundError:
            return None
        return str(value) if value is not None else None

    def set_environment_variable(self, name: str, value: str, scope: EnvironmentScope):
        hive, subkey = _split_registry_path(ENVIRONMENT_KEYS[scope])
        value_type = winreg.REG_EXPAND_SZ if "%" in value else winreg.REG_SZ
        with winreg.OpenKey(hive, subkey, 0, winreg.KEY_SET_VALUE) as key:
            winreg.SetValueEx(key, name, 0, value_type, value)
        self._broadcast_environment_change()

    def delete_environment_variable(self, name: str, scope: EnvironmentScope):
        hive, subkey = _split_registry_path(ENVIRONMENT_KEYS[scope])
        with winreg.OpenKey(hive, subkey, 0, winreg.KEY_SET_VALUE) as key:
            winreg.DeleteValue(key, name)
        self._broadcast_environment_change()

    def _broadcast_environment_change(self):
        """Tell running shells that the persistent environment changed"""
        import ctypes

        HWND_BROADCAST = 0xFFFF
        WM_SETTINGCHANGE = 0x001A
        SMTO_ABORTIFHUNG = 0x0002
        result = ctypes.c_ulong()
        ctypes.windll.user32.SendMessageTimeoutW(
            HWND_BROADCAST, WM_SETTINGCHANGE, 0, "Environment", SMTO_ABORTIFHUNG, 5000, ctypes.byref(result)
        )

    # -- processes -----------------------------------------------------------

    def find_processes(self, names: list[str]) -> list[ProcessInfo]:
        wanted = {n.lower() for n in names}
        own_pid = os.getpid()
        found: list[ProcessInfo] = []
        for proc in psutil.process_iter(["pid", "name", "exe"]):
            try:
                name = (proc.info.get("name") or "").lower()
                if name in wanted and proc.info["pid"] != own_pid:
                    exe = proc.info.get("exe") or ""
                    found.append(ProcessInfo(pid=proc.info["pid"], name=proc.info["name"], exe=exe))
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        return found

    def terminate_process(self, pid: int, timeout: float) -> bool:
        """Terminate a process, escalating to kill; True once it is gone"""
        try:
            proc = psutil.Process(pid)
            proc.terminate()
            try:
                proc.wait(timeout=timeout)
            except psutil.TimeoutExpired:
                proc.kill()
                proc.wait(timeout=timeout)
        except psutil.NoSuchProcess:
            return True
        except (psutil.AccessDenied, psutil.TimeoutExpired):
            return False
        return True

    # -- misc ----------------------------------------------------------------

    def is_elevated(self) -> bool:
        import ctypes

        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError):
            return False


def default_facilities() -> SystemFacilities:
    if os.name != "nt":
        raise OSError("Exaleipsis removes Windows installations and needs a Windows host")
    return WindowsFacilities()
