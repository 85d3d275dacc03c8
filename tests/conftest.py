from __future__ import annotations

from typing import Optional

import pytest

from finding_ledger import FindingLedger, RunMode, RunState
from path_safety import PathSafetyValidator, normalize_registry_path
from platform_facilities import CommandResult, EnvironmentScope, ProcessInfo, SystemFacilities, UninstallRecord


class FakeFacilities(SystemFacilities):
    """In-memory stand-in for the Windows capability interface

    Every call is appended to ``calls`` as (method, argument) so tests can
    assert ordering and the absence of destructive calls.
    """

    DESTRUCTIVE = frozenset(
        {
            "create_checkpoint",
            "run_command",
            "remove_package",
            "delete_registry_key",
            "delete_registry_value",
            "set_environment_variable",
            "delete_environment_variable",
            "terminate_process",
        }
    )

    def __init__(self):
        self.calls: list[tuple[str, object]] = []
        self.commands: list[list[str]] = []
        self.command_script: list[CommandResult] = []
        self.registry_keys: set[str] = set()
        self.registry_values: set[str] = set()
        self.failing_registry: set[str] = set()
        self.uninstall_records: list[UninstallRecord] = []
        self.environment: dict[tuple[EnvironmentScope, str], str] = {}
        self.fail_environment_writes = False
        self.processes: list[ProcessInfo] = []
        self.unkillable: set[int] = set()
        self.packages: list[str] = []
        self.package_results: dict[str, CommandResult] = {}
        self.checkpoint_result = True
        self.free_space = 500 * 1024**3
        self.executables: dict[str, str] = {}
        self.elevated = True
        self.sleeps: list[float] = []

    def _call(self, name: str, argument: object = None):
        self.calls.append((name, argument))

    @property
    def destructive_calls(self) -> list[tuple[str, object]]:
        return [c for c in self.calls if c[0] in self.DESTRUCTIVE]

    # -- checkpoint / commands / packages

    def create_checkpoint(self, description: str) -> bool:
        self._call("create_checkpoint", description)
        return self.checkpoint_result

    def run_command(self, argv: list[str], timeout: float) -> CommandResult:
        self._call("run_command", list(argv))
        self.commands.append(list(argv))
        if self.command_script:
            return self.command_script.pop(0)
        return CommandResult(exit_code=0)

    def list_packages(self, patterns: list[str]) -> list[str]:
        self._call("list_packages", list(patterns))
        return list(self.packages)

    def remove_package(self, package_name: str, timeout: float) -> CommandResult:
        self._call("remove_package", package_name)
        result = self.package_results.get(package_name, CommandResult(exit_code=0))
        if result.succeeded and package_name in self.packages:
            self.packages.remove(package_name)
        return result

    # -- registry

    def add_key(self, path: str):
        self.registry_keys.add(normalize_registry_path(path).casefold())

    def registry_key_exists(self, path: str) -> bool:
        self._call("registry_key_exists", path)
        return normalize_registry_path(path).casefold() in self.registry_keys

    def registry_value_exists(self, path: str) -> bool:
        self._call("registry_value_exists", path)
        return normalize_registry_path(path).casefold() in self.registry_values

    def delete_registry_key(self, path: str):
        self._call("delete_registry_key", path)
        key = normalize_registry_path(path).casefold()
        if key in self.failing_registry:
            raise PermissionError(13, "Access is denied", path)
        self.registry_keys = {k for k in self.registry_keys if k != key and not k.startswith(key + "\\")}

    def delete_registry_value(self, path: str):
        self._call("delete_registry_value", path)
        self.registry_values.discard(normalize_registry_path(path).casefold())

    def list_uninstall_records(self, name_patterns: list[str]) -> list[UninstallRecord]:
        self._call("list_uninstall_records", list(name_patterns))
        return list(self.uninstall_records)

    # -- environment

    def get_environment_variable(self, name: str, scope: EnvironmentScope) -> Optional[str]:
        self._call("get_environment_variable", (scope, name))
        return self.environment.get((scope, name))

    def set_environment_variable(self, name: str, value: str, scope: EnvironmentScope):
        self._call("set_environment_variable", (scope, name))
        if self.fail_environment_writes:
            raise PermissionError(13, "Access is denied")
        self.environment[(scope, name)] = value

    def delete_environment_variable(self, name: str, scope: EnvironmentScope):
        self._call("delete_environment_variable", (scope, name))
        if self.fail_environment_writes:
            raise PermissionError(13, "Access is denied")
        self.environment.pop((scope, name), None)

    # -- processes

    def find_processes(self, names: list[str]) -> list[ProcessInfo]:
        self._call("find_processes", list(names))
        return list(self.processes)

    def terminate_process(self, pid: int, timeout: float) -> bool:
        self._call("terminate_process", pid)
        if pid in self.unkillable:
            return False
        self.processes = [p for p in self.processes if p.pid != pid]
        return True

    # -- misc

    def which(self, name: str) -> Optional[str]:
        self._call("which", name)
        return self.executables.get(name)

    def free_space_bytes(self, path: str) -> int:
        self._call("free_space_bytes", path)
        return self.free_space

    def is_elevated(self) -> bool:
        return self.elevated

    def sleep(self, seconds: float):
        self._call("sleep", seconds)
        self.sleeps.append(seconds)


@pytest.fixture
def facilities() -> FakeFacilities:
    return FakeFacilities()


@pytest.fixture
def validator() -> PathSafetyValidator:
    return PathSafetyValidator()


@pytest.fixture
def scan_ledger() -> FindingLedger:
    return FindingLedger(RunState(RunMode.SCAN))


@pytest.fixture
def execute_ledger() -> FindingLedger:
    return FindingLedger(RunState(RunMode.EXECUTE))
