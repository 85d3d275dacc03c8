#!/usr/bin/env python3
"""
Path Safety Validation

Pure predicates that decide whether a filesystem path or registry key may
ever be the target of a destructive action. Nothing in here writes to disk;
the only I/O is read-only path resolution.

The validator fails closed: malformed input, resolution failures and any
internal fault all count as "unsafe".
"""

import ntpath
import os
import posixpath
import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

_DRIVE_ROOT = re.compile(r"^[A-Za-z]:[\\/]?$")

DRIVE_REMOTE = 4  # GetDriveTypeW


@dataclass(frozen=True)
class ProtectedPath:
    """A root that must never be matched as a removal target

    exact_only entries protect the directory itself but leave its
    descendants removable (e.g. the user profile root).
    """

    path: str
    exact_only: bool = False


def windows_protected_paths(environ: Optional[Mapping[str, str]] = None) -> tuple[ProtectedPath, ...]:
    """Protected roots of a Windows installation, derived from its environment"""
    env = os.environ if environ is None else environ
    system_drive = env.get("SystemDrive") or "C:"
    system_root = env.get("SystemRoot") or env.get("windir") or system_drive + "\\Windows"
    program_files = env.get("ProgramFiles") or system_drive + "\\Program Files"
    program_files_x86 = env.get("ProgramFiles(x86)") or system_drive + "\\Program Files (x86)"
    program_data = env.get("ProgramData") or system_drive + "\\ProgramData"

    entries = [
        ProtectedPath(system_drive + "\\", exact_only=True),
        ProtectedPath(system_root),
        ProtectedPath(program_files + "\\WindowsApps"),
        ProtectedPath(program_files, exact_only=True),
        ProtectedPath(program_files_x86, exact_only=True),
        ProtectedPath(program_data, exact_only=True),
        ProtectedPath(system_drive + "\\Users", exact_only=True),
    ]
    for name in ("USERPROFILE", "APPDATA", "LOCALAPPDATA"):
        if env.get(name):
            entries.append(ProtectedPath(env[name], exact_only=True))
    if env.get("LOCALAPPDATA"):
        # Alias store: the aliases inside are targets, the directory is not
        entries.append(ProtectedPath(env["LOCALAPPDATA"] + "\\Microsoft\\WindowsApps", exact_only=True))
    return tuple(entries)


def posix_protected_paths(environ: Optional[Mapping[str, str]] = None) -> tuple[ProtectedPath, ...]:
    """Protected roots on POSIX hosts"""
    env = os.environ if environ is None else environ
    entries = [ProtectedPath("/", exact_only=True)]
    entries.extend(
        ProtectedPath(p)
        for p in ("/bin", "/boot", "/dev", "/etc", "/lib", "/lib64", "/proc", "/sbin", "/sys", "/usr", "/System")
    )
    if env.get("HOME"):
        entries.append(ProtectedPath(env["HOME"], exact_only=True))
    return tuple(entries)


def default_protected_paths(windows: Optional[bool] = None) -> tuple[ProtectedPath, ...]:
    if windows is None:
        windows = os.name == "nt"
    return windows_protected_paths() if windows else posix_protected_paths()


class PathSafetyValidator:
    """Decides whether a path is safe to remove

    The result is never cached: callers re-evaluate immediately before every
    destructive action so that a retargeted link cannot slip through.
    A link whose target lies inside a protected root is itself rejected,
    even though removing it would only delete the link entry.
    """

    def __init__(self, protected_paths: Optional[Iterable[ProtectedPath]] = None, pathmod=None):
        """Initialize validator

        Args:
            protected_paths: Protected roots (defaults to the platform set)
            pathmod: ntpath or posixpath, defaults to os.path
        """
        self.pathmod = pathmod or os.path
        if protected_paths is None:
            protected_paths = default_protected_paths(windows=self.pathmod is ntpath)

        self._protected: list[tuple[str, bool]] = []
        for entry in protected_paths:
            key = self._protected_key(entry.path)
            if key:
                self._protected.append((key, entry.exact_only))

    def is_safe(self, path) -> bool:
        """Return True only if *path* may be targeted by a removal"""
        try:
            return self._check(path)
        except Exception:
            return False

    # -- internals -----------------------------------------------------------

    def _check(self, path) -> bool:
        if path is None:
            return False
        text = os.fspath(path)
        if not isinstance(text, str) or not text.strip() or "\0" in text:
            return False

        forms = self._resolved_forms(text.rstrip())
        if not forms:
            return False
        return all(self._form_is_safe(form) for form in forms)

    def _resolved_forms(self, text: str) -> list[str]:
        """Lexical absolute form plus the link-resolved form"""
        pm = self.pathmod
        try:
            lexical = pm.normpath(pm.abspath(text))
            resolved = pm.normpath(pm.realpath(text))
        except (OSError, ValueError):
            return []
        return [lexical] if resolved == lexical else [lexical, resolved]

    def _strip(self, form: str) -> str:
        form = form.rstrip()
        seps = (self.pathmod.sep, self.pathmod.altsep or self.pathmod.sep)
        if len(form) > 1 and form.endswith(seps):
            form = form[:-1]
        return form

    def _is_root(self, form: str) -> bool:
        if _DRIVE_ROOT.match(form):
            return True
        if self.pathmod is posixpath:
            return form in ("", "/")
        drive, rest = ntpath.splitdrive(form)
        return rest in ("", "\\", "/") and (bool(drive) or rest != "")

    def _form_is_safe(self, form: str) -> bool:
        stripped = self._strip(form)
        if self._is_root(stripped):
            return False

        key = stripped.casefold()
        sep = self.pathmod.sep
        for protected, exact_only in self._protected:
            if key == protected:
                return False
            if not exact_only and key.startswith(protected + sep):
                return False
        return True

    def _protected_key(self, path: str) -> Optional[str]:
        if not path or not path.strip():
            return None
        pm = self.pathmod
        try:
            normalized = pm.normpath(pm.abspath(path.strip()))
        except (OSError, ValueError):
            return None
        return self._strip(normalized).casefold()


# ---------------------------------------------------------------------------
# Network and long-path helpers
# ---------------------------------------------------------------------------


def _drive_type(drive: str) -> int:
    import ctypes

    return ctypes.windll.kernel32.GetDriveTypeW(f"{drive}\\")


def is_network_location(path: str) -> bool:
    """True for UNC paths and, on Windows, for mapped network drives"""
    text = str(path)
    if text.startswith(("\\\\", "//")):
        if text[2:4] in ("?\\", ".\\"):
            return text[4:8].upper() == "UNC\\"
        return True
    if os.name == "nt" and len(text) >= 2 and text[1] == ":" and text[0].isalpha():
        try:
            return _drive_type(text[:2]) == DRIVE_REMOTE
        except OSError:
            return False
    return False


def to_extended_length_path(path: str, windows: Optional[bool] = None) -> str:
    """Return the \\\\?\\ form of a path so Win32 skips the MAX_PATH limit

    Non-Windows hosts get the path back unchanged.
    """
    if windows is None:
        windows = os.name == "nt"
    if not windows or path.startswith("\\\\?\\"):
        return path
    absolute = ntpath.normpath(ntpath.abspath(path))
    if absolute.startswith("\\\\"):
        return "\\\\?\\UNC\\" + absolute[2:]
    return "\\\\?\\" + absolute


# ---------------------------------------------------------------------------
# Registry keys
# ---------------------------------------------------------------------------

_HIVE_ALIASES = {
    "HKEY_LOCAL_MACHINE": "HKLM",
    "HKEY_CURRENT_USER": "HKCU",
    "HKEY_CLASSES_ROOT": "HKCR",
    "HKEY_USERS": "HKU",
    "HKEY_CURRENT_CONFIG": "HKCC",
}
_HIVES = frozenset(_HIVE_ALIASES.values())

PROTECTED_REGISTRY_KEYS = frozenset(
    key.casefold()
    for key in (
        r"HKLM\SOFTWARE",
        r"HKLM\SOFTWARE\Classes",
        r"HKLM\SOFTWARE\Microsoft",
        r"HKLM\SOFTWARE\Microsoft\Windows",
        r"HKLM\SOFTWARE\Microsoft\Windows\CurrentVersion",
        r"HKLM\SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall",
        r"HKLM\SOFTWARE\Microsoft\Windows\CurrentVersion\App Paths",
        r"HKLM\SOFTWARE\WOW6432Node",
        r"HKLM\SOFTWARE\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall",
        r"HKLM\SOFTWARE\Policies",
        r"HKCU\Software",
        r"HKCU\Software\Classes",
        r"HKCU\Software\Microsoft",
        r"HKCU\Software\Microsoft\Windows",
        r"HKCU\Software\Microsoft\Windows\CurrentVersion",
        r"HKCU\Software\Microsoft\Windows\CurrentVersion\Uninstall",
        r"HKCU\Software\Microsoft\Windows\CurrentVersion\App Paths",
        r"HKCU\Software\Policies",
        r"HKCU\Environment",
    )
)


def normalize_registry_path(path: str) -> str:
    """Canonical form: short hive name, backslashes, no trailing separator"""
    parts = [p for p in path.strip().replace("/", "\\").split("\\") if p]
    if not parts:
        return ""
    parts[0] = _HIVE_ALIASES.get(parts[0].upper(), parts[0].upper())
    return "\\".join(parts)


def is_safe_registry_key(path: Optional[str]) -> bool:
    """True if a registry key (or value path) is deep enough and unprotected"""
    if not path or not path.strip():
        return False
    normalized = normalize_registry_path(path)
    segments = normalized.split("\\")
    hive = segments[0]
    if hive not in _HIVES:
        return False
    min_depth = 2 if hive == "HKCR" else 3
    if len(segments) < min_depth:
        return False
    if hive == "HKLM" and segments[1].upper() == "SYSTEM":
        return False
    return normalized.casefold() not in PROTECTED_REGISTRY_KEYS
