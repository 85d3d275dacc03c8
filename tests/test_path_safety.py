from __future__ import annotations

import ntpath
import os
from pathlib import Path

import pytest

from path_safety import (
    PathSafetyValidator,
    ProtectedPath,
    is_network_location,
    is_safe_registry_key,
    to_extended_length_path,
    windows_protected_paths,
)

WINDOWS_ENV = {
    "SystemDrive": "C:",
    "SystemRoot": "C:\\Windows",
    "ProgramFiles": "C:\\Program Files",
    "ProgramFiles(x86)": "C:\\Program Files (x86)",
    "ProgramData": "C:\\ProgramData",
    "USERPROFILE": "C:\\Users\\ada",
    "APPDATA": "C:\\Users\\ada\\AppData\\Roaming",
    "LOCALAPPDATA": "C:\\Users\\ada\\AppData\\Local",
}


@pytest.fixture
def windows_validator() -> PathSafetyValidator:
    return PathSafetyValidator(windows_protected_paths(WINDOWS_ENV), pathmod=ntpath)


@pytest.mark.parametrize(
    "path",
    [
        "C:\\",
        "D:\\",
        "C:\\Windows",
        "c:\\windows\\",
        "C:\\Windows\\System32\\drivers",
        "C:\\Program Files",
        "C:\\Program Files (x86)",
        "C:\\ProgramData",
        "C:\\Program Files\\WindowsApps",
        "C:\\Program Files\\WindowsApps\\PythonSoftwareFoundation.Python.3.12_qbz5n2kfra8p0",
        "C:\\Users",
        "C:\\Users\\ada",
        "C:\\USERS\\ADA\\",
        "C:\\Users\\ada\\AppData\\Local",
        "C:\\Users\\ada\\AppData\\Local\\Microsoft\\WindowsApps",
    ],
)
def test_protected_windows_paths_are_unsafe(windows_validator: PathSafetyValidator, path: str) -> None:
    assert windows_validator.is_safe(path) is False


@pytest.mark.parametrize(
    "path",
    [
        "C:\\Python314",
        "C:\\Program Files\\Python314",
        "C:\\Users\\ada\\AppData\\Local\\Programs\\Python",
        "C:\\Users\\ada\\AppData\\Local\\Microsoft\\WindowsApps\\python.exe",
        "C:\\Users\\ada\\projects\\.venv",
        "C:\\Windowsold",
        "C:\\Python314   ",
    ],
)
def test_user_and_install_paths_are_safe(windows_validator: PathSafetyValidator, path: str) -> None:
    assert windows_validator.is_safe(path) is True


@pytest.mark.parametrize("path", [None, "", "   ", "C:\\Py\0thon"])
def test_malformed_input_is_rejected(windows_validator: PathSafetyValidator, path) -> None:
    assert windows_validator.is_safe(path) is False


def test_internal_fault_fails_closed(validator: PathSafetyValidator) -> None:
    assert validator.is_safe(12345) is False


def test_posix_root_and_system_directories_are_unsafe(validator: PathSafetyValidator) -> None:
    assert validator.is_safe("/") is False
    assert validator.is_safe("/etc") is False
    assert validator.is_safe("/usr/lib/python3") is False


def test_link_into_protected_directory_is_unsafe(tmp_path: Path, validator: PathSafetyValidator) -> None:
    link = tmp_path / "innocent"
    try:
        os.symlink("/etc", link, target_is_directory=True)
    except OSError:
        pytest.skip("symlinks not available")

    assert validator.is_safe(link) is False


def test_explicit_protected_entry_protects_descendants(tmp_path: Path) -> None:
    keep = tmp_path / "keep"
    validator = PathSafetyValidator([ProtectedPath(str(keep))])

    assert validator.is_safe(keep) is False
    assert validator.is_safe(keep / "child") is False
    assert validator.is_safe(tmp_path / "keeper") is True


def test_exact_only_entry_leaves_descendants_removable(tmp_path: Path) -> None:
    validator = PathSafetyValidator([ProtectedPath(str(tmp_path), exact_only=True)])

    assert validator.is_safe(tmp_path) is False
    assert validator.is_safe(tmp_path / "Python314") is True


@pytest.mark.parametrize(
    "key, expected",
    [
        ("", False),
        ("HKLM", False),
        ("HKLM\\SOFTWARE", False),
        ("HKLM\\SOFTWARE\\Microsoft", False),
        ("HKLM\\SOFTWARE\\Python", True),
        ("HKEY_LOCAL_MACHINE\\SOFTWARE\\Python\\PythonCore", True),
        ("HKLM\\SYSTEM\\CurrentControlSet\\Services\\Foo", False),
        ("HKCU\\Software\\Microsoft\\Windows\\CurrentVersion\\Uninstall", False),
        ("HKCU\\Software\\Microsoft\\Windows\\CurrentVersion\\Uninstall\\{11111111-2222-3333-4444-555555555555}", True),
        ("HKCU\\Environment", False),
        ("HKCU\\Environment\\PYTHONPATH", True),
        ("HKCR\\Python.File", True),
        ("NOTAHIVE\\Software\\Python", False),
    ],
)
def test_registry_key_safety(key: str, expected: bool) -> None:
    assert is_safe_registry_key(key) is expected


@pytest.mark.parametrize(
    "path, expected",
    [
        ("\\\\server\\share\\Python", True),
        ("//server/share/Python", True),
        ("\\\\?\\UNC\\server\\share\\Python", True),
        ("\\\\?\\C:\\Python314", False),
        ("/tmp/Python314", False),
    ],
)
def test_network_location_detection(path: str, expected: bool) -> None:
    assert is_network_location(path) is expected


def test_extended_length_path_forms() -> None:
    assert to_extended_length_path("C:\\Python314\\Lib", windows=True) == "\\\\?\\C:\\Python314\\Lib"
    assert to_extended_length_path("\\\\server\\share\\x", windows=True) == "\\\\?\\UNC\\server\\share\\x"
    assert to_extended_length_path("\\\\?\\C:\\x", windows=True) == "\\\\?\\C:\\x"
    assert to_extended_length_path("/tmp/x", windows=False) == "/tmp/x"
