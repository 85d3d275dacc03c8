#!/usr/bin/env python3
"""
Finding Ledger

Run-level data model for Exaleipsis: the candidates observed during a run,
the run state that owns them, and the append-only ledger that records
every observation together with the Removed/Failed/Skipped counters.
"""

import errno
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class CandidateKind(Enum):
    FILE = "File"
    DIRECTORY = "Directory"
    VIRTUAL_ENV = "VirtualEnv"
    REGISTRY_KEY = "RegistryKey"
    REGISTRY_VALUE = "RegistryValue"
    PROGRAM = "Program"
    PROCESS_HANDLE = "ProcessHandle"
    APP_PACKAGE = "AppPackage"


class CandidateStatus(Enum):
    FOUND = "Found"
    REMOVED = "Removed"
    FAILED = "Failed"
    SKIPPED = "Skipped"

    @property
    def is_terminal(self) -> bool:
        return self is not CandidateStatus.FOUND


class RunMode(Enum):
    SCAN = "scan"
    EXECUTE = "execute"


class FaultKind(Enum):
    """Classification of everything that can go wrong for one candidate"""

    VALIDATION_REJECTED = "validation_rejected"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    PATH_TOO_LONG = "path_too_long"
    TIMEOUT = "timeout"
    TRANSIENT_RESOURCE_CONTENTION = "transient_resource_contention"
    UNKNOWN_COMMAND_FORMAT = "unknown_command_format"
    UNEXPECTED_FAULT = "unexpected_fault"


# Windows error codes that matter for classification
_WINERROR_ACCESS_DENIED = 5
_WINERROR_SHARING_VIOLATION = 32
_WINERROR_PATH_NOT_FOUND = 3
_WINERROR_FILENAME_EXCED_RANGE = 206
_MAX_PATH = 260


def classify_fault(error: BaseException, path: Optional[str] = None) -> FaultKind:
    """Map an exception raised by a filesystem primitive to a FaultKind"""
    if not isinstance(error, OSError):
        return FaultKind.UNEXPECTED_FAULT

    winerror = getattr(error, "winerror", None)
    if error.errno == errno.ENAMETOOLONG or winerror == _WINERROR_FILENAME_EXCED_RANGE:
        return FaultKind.PATH_TOO_LONG
    if winerror == _WINERROR_PATH_NOT_FOUND and path is not None and len(path) >= _MAX_PATH:
        return FaultKind.PATH_TOO_LONG
    if isinstance(error, PermissionError) or winerror in (_WINERROR_ACCESS_DENIED, _WINERROR_SHARING_VIOLATION):
        return FaultKind.PERMISSION_DENIED
    if isinstance(error, FileNotFoundError):
        return FaultKind.NOT_FOUND
    return FaultKind.UNEXPECTED_FAULT


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Candidate:
    """One unit of possible destructive action, frozen once recorded"""

    kind: CandidateKind
    identifier: str
    location: str
    status: CandidateStatus
    size_bytes: int = 0
    discovered_at: datetime = field(default_factory=datetime.now)
    detail: str = ""
    fault: Optional[FaultKind] = None

    def __post_init__(self):
        if self.size_bytes < 0:
            raise ValueError(f"size_bytes must be non-negative, got {self.size_bytes}")


@dataclass
class RunState:
    """Process-wide state of one run, owned by the coordinator"""

    mode: RunMode
    removed: int = 0
    failed: int = 0
    skipped: int = 0
    total_size_bytes: int = 0
    ledger: list[Candidate] = field(default_factory=list)

    @property
    def is_scan(self) -> bool:
        return self.mode is RunMode.SCAN

    def __setattr__(self, name, value):
        # mode is fixed once the run has started
        if name == "mode" and "mode" in self.__dict__:
            raise AttributeError("run mode is immutable for the run")
        super().__setattr__(name, value)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

# Statuses whose size counts towards total_size_bytes: bytes discovered in
# scan mode, bytes reclaimed in execute mode.
_SIZED_STATUSES = (CandidateStatus.FOUND, CandidateStatus.REMOVED)


class FindingLedger:
    """Append-only record of every candidate observed during a run"""

    def __init__(self, state: RunState):
        self.state = state

    def record(self, candidate: Candidate) -> Candidate:
        """Append a candidate and update the run counters

        Each terminal status increments exactly one counter; Found increments none.
        Duplicate observations of one location are kept as separate entries.
        """
        state = self.state
        state.ledger.append(candidate)

        if candidate.status is CandidateStatus.REMOVED:
            state.removed += 1
        elif candidate.status is CandidateStatus.FAILED:
            state.failed += 1
        elif candidate.status is CandidateStatus.SKIPPED:
            state.skipped += 1

        if candidate.status in _SIZED_STATUSES:
            state.total_size_bytes += candidate.size_bytes
        return candidate

    def entries_with(self, status: CandidateStatus) -> list[Candidate]:
        return [c for c in self.state.ledger if c.status is status]

    def __len__(self) -> int:
        return len(self.state.ledger)

    def summary(self) -> dict[str, int]:
        state = self.state
        return {
            "found": len(self.entries_with(CandidateStatus.FOUND)),
            "removed": state.removed,
            "failed": state.failed,
            "skipped": state.skipped,
            "total_size_bytes": state.total_size_bytes,
        }
