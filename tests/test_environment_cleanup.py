from __future__ import annotations

import json
from pathlib import Path

import pytest

from environment_cleanup import EnvironmentCleanup, matches_any, split_path_value
from finding_ledger import CandidateKind, CandidateStatus, FaultKind
from platform_facilities import EnvironmentScope

USER = EnvironmentScope.USER
MACHINE = EnvironmentScope.MACHINE

VARIABLES = ["PYTHONPATH", "PYTHONHOME", "PY_PYTHON", "VIRTUAL_ENV"]
PATH_PATTERNS = [
    "*\\python*",
    "*\\python*\\scripts",
    "*\\appdata\\roaming\\python\\*\\scripts",
]
USER_PATH = ";".join(
    [
        "C:\\Users\\ada\\AppData\\Local\\Programs\\Python\\Python314\\Scripts\\",
        "C:\\Users\\ada\\AppData\\Local\\Programs\\Python\\Python314\\",
        "C:\\Users\\ada\\bin",
        "C:\\Users\\ada\\AppData\\Local\\Microsoft\\WindowsApps",
        "C:\\Users\\ada\\AppData\\Roaming\\Python\\Python314\\Scripts",
    ]
)
MACHINE_PATH = "C:\\Windows\\system32;C:\\Windows;C:\\Python312\\;C:\\Program Files\\Git\\cmd"


@pytest.fixture
def populated(facilities):
    facilities.environment = {
        (USER, "PYTHONPATH"): "C:\\src\\lib",
        (USER, "PY_PYTHON"): "3.14",
        (MACHINE, "PYTHONHOME"): "C:\\Python312",
        (USER, "Path"): USER_PATH,
        (MACHINE, "Path"): MACHINE_PATH,
    }
    return facilities


def _cleanup(facilities, ledger, output_dir: Path) -> EnvironmentCleanup:
    return EnvironmentCleanup(ledger, facilities, output_dir, VARIABLES, PATH_PATTERNS)


def test_matches_any_is_case_insensitive_and_ignores_trailing_separator() -> None:
    assert matches_any("C:\\PYTHON312\\", PATH_PATTERNS)
    assert matches_any('"C:\\Python312\\Scripts"', PATH_PATTERNS)
    assert not matches_any("C:\\Windows\\system32", PATH_PATTERNS)
    assert not matches_any("", PATH_PATTERNS)


def test_split_path_value_preserves_order() -> None:
    kept, dropped = split_path_value(USER_PATH, PATH_PATTERNS)

    assert kept == ["C:\\Users\\ada\\bin", "C:\\Users\\ada\\AppData\\Local\\Microsoft\\WindowsApps"]
    assert dropped == [
        "C:\\Users\\ada\\AppData\\Local\\Programs\\Python\\Python314\\Scripts\\",
        "C:\\Users\\ada\\AppData\\Local\\Programs\\Python\\Python314\\",
        "C:\\Users\\ada\\AppData\\Roaming\\Python\\Python314\\Scripts",
    ]


def test_backup_is_written_before_the_first_variable_is_cleared(populated, execute_ledger, tmp_path: Path) -> None:
    cleanup = _cleanup(populated, execute_ledger, tmp_path / "out")
    original_delete = populated.delete_environment_variable
    seen_backups: list[bool] = []

    def delete_after_backup(name, scope):
        seen_backups.append(cleanup.backup_path is not None and cleanup.backup_path.exists())
        original_delete(name, scope)

    populated.delete_environment_variable = delete_after_backup
    cleanup.run()

    assert seen_backups == [True, True, True]


def test_backup_schema(populated, execute_ledger, tmp_path: Path) -> None:
    cleanup = _cleanup(populated, execute_ledger, tmp_path)
    cleanup.run()

    data = json.loads(cleanup.backup_path.read_text(encoding="utf-8"))
    assert cleanup.backup_path.name.startswith("exaleipsis_env_backup_")
    assert set(data) == {"created_at", "variables", "user_path", "machine_path"}
    assert data["variables"] == {
        "user:PYTHONPATH": "C:\\src\\lib",
        "user:PY_PYTHON": "3.14",
        "machine:PYTHONHOME": "C:\\Python312",
    }
    assert data["user_path"] == USER_PATH
    assert data["machine_path"] == MACHINE_PATH


def test_execute_clears_variables_and_filters_path(populated, execute_ledger, tmp_path: Path) -> None:
    results = _cleanup(populated, execute_ledger, tmp_path).run()

    assert (USER, "PYTHONPATH") not in populated.environment
    assert (MACHINE, "PYTHONHOME") not in populated.environment
    assert populated.environment[(USER, "Path")] == (
        "C:\\Users\\ada\\bin;C:\\Users\\ada\\AppData\\Local\\Microsoft\\WindowsApps"
    )
    assert populated.environment[(MACHINE, "Path")] == "C:\\Windows\\system32;C:\\Windows;C:\\Program Files\\Git\\cmd"

    assert all(c.kind is CandidateKind.REGISTRY_VALUE for c in results)
    assert all(c.status is CandidateStatus.REMOVED for c in results)
    # 3 variables, 3 user PATH entries, 1 machine PATH entry
    assert len(results) == 7
    assert results[0].location == "HKCU\\Environment\\PYTHONPATH"
    writes = [c for c in populated.calls if c[0] == "set_environment_variable"]
    assert writes == [("set_environment_variable", (USER, "Path")), ("set_environment_variable", (MACHINE, "Path"))]


def test_scan_writes_backup_but_mutates_nothing(populated, scan_ledger, tmp_path: Path) -> None:
    before = dict(populated.environment)
    cleanup = _cleanup(populated, scan_ledger, tmp_path)

    results = cleanup.run()

    assert cleanup.backup_path.exists()
    assert populated.environment == before
    assert populated.destructive_calls == []
    assert {c.status for c in results} == {CandidateStatus.FOUND}


def test_backup_failure_clears_nothing(populated, execute_ledger, tmp_path: Path) -> None:
    blocker = tmp_path / "not_a_directory"
    blocker.write_text("")
    before = dict(populated.environment)

    with pytest.raises(OSError):
        _cleanup(populated, execute_ledger, blocker).run()

    assert populated.environment == before
    assert populated.destructive_calls == []
    assert len(execute_ledger) == 0


def test_write_failure_is_recorded_failed(populated, execute_ledger, tmp_path: Path) -> None:
    populated.fail_environment_writes = True

    results = _cleanup(populated, execute_ledger, tmp_path).run()

    assert {c.status for c in results} == {CandidateStatus.FAILED}
    assert all(c.fault is FaultKind.PERMISSION_DENIED for c in results)
    assert execute_ledger.state.failed == len(results)


def test_already_cleared_variable_counts_as_removed(populated, execute_ledger, tmp_path: Path) -> None:
    def vanished(name, scope):
        raise FileNotFoundError(2, "The system cannot find the file specified")

    populated.delete_environment_variable = vanished

    results = _cleanup(populated, execute_ledger, tmp_path).run()

    variables = [c for c in results if "variable" in c.identifier]
    assert len(variables) == 3
    assert all(c.status is CandidateStatus.REMOVED for c in variables)


def test_nothing_tracked_yields_no_entries(facilities, execute_ledger, tmp_path: Path) -> None:
    cleanup = _cleanup(facilities, execute_ledger, tmp_path)

    assert cleanup.run() == []
    assert cleanup.backup_path.exists()
