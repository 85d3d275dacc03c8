#!/usr/bin/env python3
"""
Removal Executor

Performs (execute mode) or simulates (scan mode) the destructive action for
one candidate at a time: filesystem entries, registry keys and values,
packaged apps and running processes.

Every call walks the same hard gates in order: existence, safety,
network policy, measurement, mode. Faults are contained here; a failed
candidate is recorded and the run moves on.
"""

import logging
import os
import shutil
import stat
from dataclasses import dataclass
from typing import Callable, Optional

import event_log
from auxiliary import format_bytes
from event_log import log_event
from finding_ledger import Candidate, CandidateKind, CandidateStatus, FaultKind, FindingLedger, classify_fault
from path_safety import PathSafetyValidator, is_network_location, is_safe_registry_key, to_extended_length_path
from platform_facilities import ProcessInfo, SystemFacilities

LARGE_ITEM_THRESHOLD = 1000
PROCESS_TERMINATE_TIMEOUT = 10


# ---------------------------------------------------------------------------
# Filesystem primitives
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SizeMeasurement:
    """Size of a candidate; a fault collapses the size to 0"""

    size_bytes: int
    entry_count: int
    fault: Optional[FaultKind] = None

    @property
    def ok(self) -> bool:
        return self.fault is None


def is_reparse_point(path: str) -> bool:
    """True for symlinks, junctions and other reparse points (app aliases)"""
    try:
        st = os.lstat(path)
    except OSError:
        return False
    if stat.S_ISLNK(st.st_mode):
        return True
    if getattr(st, "st_file_attributes", 0) & stat.FILE_ATTRIBUTE_REPARSE_POINT:
        return True
    isjunction = getattr(os.path, "isjunction", None)
    return bool(isjunction and isjunction(path))


def measure_size(path: str) -> SizeMeasurement:
    """Return the byte size and entry count of a file or directory tree"""
    try:
        st = os.lstat(path)
    except OSError as e:
        return SizeMeasurement(0, 0, classify_fault(e, path))

    if not stat.S_ISDIR(st.st_mode):
        return SizeMeasurement(st.st_size if stat.S_ISREG(st.st_mode) else 0, 1)

    total = 0
    count = 0
    faults: list[FaultKind] = []

    def _walk_error(error: OSError):
        faults.append(classify_fault(error, getattr(error, "filename", None)))

    for dirpath, dirnames, filenames in os.walk(path, followlinks=False, onerror=_walk_error):
        count += len(dirnames) + len(filenames)
        for name in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, name)).st_size
            except OSError as e:
                faults.append(classify_fault(e, os.path.join(dirpath, name)))

    if faults:
        return SizeMeasurement(0, count, faults[0])
    return SizeMeasurement(total, count)


def is_read_only(path: str) -> bool:
    st = os.lstat(path)
    if getattr(st, "st_file_attributes", 0) & stat.FILE_ATTRIBUTE_READONLY:
        return True
    return not st.st_mode & stat.S_IWRITE


def clear_read_only(path: str):
    st = os.lstat(path)
    mode = st.st_mode | stat.S_IWRITE
    if stat.S_ISDIR(st.st_mode):
        mode |= stat.S_IREAD | stat.S_IEXEC
    os.chmod(path, stat.S_IMODE(mode))


def clear_read_only_tree(root: str) -> int:
    """Clear the read-only attribute below *root* without following links

    Returns the number of entries that could not be updated.
    """
    failures = 0
    entries = [root]
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        entries.extend(os.path.join(dirpath, name) for name in dirnames + filenames)
    for entry in entries:
        if is_reparse_point(entry):
            continue
        try:
            clear_read_only(entry)
        except OSError:
            failures += 1
    return failures


def remove_link(path: str):
    """Remove a symlink or junction itself, never the target it points to"""
    try:
        os.unlink(path)
    except (IsADirectoryError, PermissionError):
        if os.name != "nt":
            raise
        # Directory links on Windows are removed like empty directories
        os.rmdir(path)


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class RemovalExecutor:
    """Performs or simulates removal of one candidate, recording the outcome"""

    def __init__(
        self,
        ledger: FindingLedger,
        validator: PathSafetyValidator,
        facilities: Optional[SystemFacilities] = None,
        include_network: bool = False,
        operation_timeout: float = 300,
        notice_callback: Optional[Callable[[str], None]] = None,
        remove_tree: Callable[[str], None] = shutil.rmtree,
        remove_file: Callable[[str], None] = os.remove,
        unlink: Callable[[str], None] = remove_link,
        windows: Optional[bool] = None,
    ):
        """Initialize executor

        Args:
            ledger: Ledger of the current run (its state carries the mode)
            validator: Safety predicate, consulted before every destructive call
            facilities: OS capability interface for registry/package/process work
            include_network: Whether network locations may be removed
            operation_timeout: Timeout for package removal commands
            notice_callback: Receives informational notices (large items)
            remove_tree, remove_file, unlink: Filesystem primitives
            windows: Whether extended-length paths apply (defaults to the host)
        """
        self.ledger = ledger
        self.validator = validator
        self.facilities = facilities
        self.include_network = include_network
        self.operation_timeout = operation_timeout
        self.notice_callback = notice_callback
        self._remove_tree = remove_tree
        self._remove_file = remove_file
        self._unlink = unlink
        self.windows = os.name == "nt" if windows is None else windows

    @property
    def state(self):
        return self.ledger.state

    # -- filesystem ----------------------------------------------------------

    def process(
        self, location, description: str, kind: CandidateKind = CandidateKind.DIRECTORY
    ) -> Optional[Candidate]:
        """Process one filesystem candidate; returns the ledger entry, or None if absent"""
        location = os.fspath(location)
        try:
            return self._process(location, description, kind)
        except Exception as e:
            log_event(event_log.ERROR, f"Unexpected fault on {location}: {e}", logging.ERROR, exc_info=e)
            return self._record(
                kind, description, location, CandidateStatus.FAILED, detail=str(e), fault=FaultKind.UNEXPECTED_FAULT
            )

    def _process(self, location: str, description: str, kind: CandidateKind) -> Optional[Candidate]:
        if not os.path.lexists(location):
            return None

        if not self.validator.is_safe(location):
            log_event(event_log.PROTECT, f"Protected path, not touching: {location}")
            return self._record(
                kind,
                description,
                location,
                CandidateStatus.SKIPPED,
                detail="protected path",
                fault=FaultKind.VALIDATION_REJECTED,
            )

        if not self.include_network and is_network_location(location):
            log_event(event_log.SKIP, f"Network location skipped: {location}")
            return self._record(kind, description, location, CandidateStatus.SKIPPED, detail="network location")

        reparse = is_reparse_point(location)
        measurement = SizeMeasurement(0, 1) if reparse else measure_size(location)
        if not measurement.ok:
            reason = measurement.fault.value
            log_event(event_log.WARN, f"Could not measure {location} ({reason}), size counted as 0", logging.WARNING)
        log_event(event_log.FOUND, f"{description}: {location} ({format_bytes(measurement.size_bytes)})")

        if self.state.is_scan:
            return self._record(kind, description, location, CandidateStatus.FOUND, measurement.size_bytes)

        return self._remove(location, description, kind, measurement, reparse)

    def _remove(
        self, location: str, description: str, kind: CandidateKind, measurement: SizeMeasurement, reparse: bool
    ) -> Candidate:
        if not self.validator.is_safe(location):
            log_event(event_log.PROTECT, f"Path became unsafe before removal: {location}")
            return self._record(
                kind,
                description,
                location,
                CandidateStatus.SKIPPED,
                detail="protected path",
                fault=FaultKind.VALIDATION_REJECTED,
            )

        is_directory = False
        if reparse:
            action = self._unlink
        elif os.path.isdir(location):
            is_directory = True
            action = self._remove_tree
            if measurement.entry_count > LARGE_ITEM_THRESHOLD:
                self._notice(f"Large item: {location} holds {measurement.entry_count:,} entries, this may take a while")
        else:
            action = self._remove_single_file

        fault, error = self._attempt(location, action, is_directory)
        if fault is None:
            log_event(event_log.REMOVE, f"Removed {kind.value} {location} ({format_bytes(measurement.size_bytes)})")
            return self._record(kind, description, location, CandidateStatus.REMOVED, measurement.size_bytes)

        log_event(event_log.ERROR, f"Failed to remove {location}: {fault.value}: {error}", logging.ERROR)
        return self._record(
            kind, description, location, CandidateStatus.FAILED, measurement.size_bytes, detail=str(error), fault=fault
        )

    def _attempt(self, location: str, action: Callable[[str], None], is_directory: bool):
        """Run *action* with the bounded retries; returns (fault, error) or (None, None)"""
        try:
            action(location)
            return None, None
        except OSError as e:
            error = e
        fault = classify_fault(error, location)

        if fault is FaultKind.PATH_TOO_LONG:
            extended = to_extended_length_path(location, windows=self.windows)
            if extended == location:
                return fault, error
            log_event(event_log.INFO, f"Path too long, retrying as {extended}")
            return self._retry(extended, action)

        if fault is FaultKind.PERMISSION_DENIED and is_directory:
            stuck = clear_read_only_tree(location)
            log_event(event_log.INFO, f"Permission denied, cleared read-only attributes ({stuck} stuck), retrying")
            return self._retry(location, action)

        if fault is FaultKind.NOT_FOUND and not os.path.lexists(location):
            return None, None
        return fault, error

    def _remove_single_file(self, path: str):
        if is_read_only(path):
            clear_read_only(path)
        self._remove_file(path)

    def _retry(self, target: str, action: Callable[[str], None]):
        try:
            action(target)
            return None, None
        except OSError as e:
            return classify_fault(e, target), e

    # -- registry ------------------------------------------------------------

    def process_registry(
        self, location: str, description: str, kind: CandidateKind = CandidateKind.REGISTRY_KEY
    ) -> Optional[Candidate]:
        """Process one registry key or value (value paths end with the value name)"""
        try:
            return self._process_registry(location, description, kind)
        except Exception as e:
            log_event(event_log.ERROR, f"Unexpected fault on {location}: {e}", logging.ERROR, exc_info=e)
            return self._record(
                kind, description, location, CandidateStatus.FAILED, detail=str(e), fault=FaultKind.UNEXPECTED_FAULT
            )

    def _process_registry(self, location: str, description: str, kind: CandidateKind) -> Optional[Candidate]:
        is_value = kind is CandidateKind.REGISTRY_VALUE
        if is_value:
            exists = self.facilities.registry_value_exists(location)
        else:
            exists = self.facilities.registry_key_exists(location)
        if not exists:
            return None

        if not is_safe_registry_key(location):
            log_event(event_log.PROTECT, f"Protected registry location, not touching: {location}")
            return self._record(
                kind,
                description,
                location,
                CandidateStatus.SKIPPED,
                detail="protected registry key",
                fault=FaultKind.VALIDATION_REJECTED,
            )

        log_event(event_log.FOUND, f"{description}: {location}")
        if self.state.is_scan:
            return self._record(kind, description, location, CandidateStatus.FOUND)

        try:
            if is_value:
                self.facilities.delete_registry_value(location)
            else:
                self.facilities.delete_registry_key(location)
        except OSError as e:
            fault = classify_fault(e)
            log_event(event_log.ERROR, f"Failed to delete {location}: {e}", logging.ERROR)
            return self._record(kind, description, location, CandidateStatus.FAILED, detail=str(e), fault=fault)

        log_event(event_log.REMOVE, f"Deleted {kind.value} {location}")
        return self._record(kind, description, location, CandidateStatus.REMOVED)

    # -- packaged apps and processes -----------------------------------------

    def process_package(self, package_name: str, description: str) -> Candidate:
        """Remove one packaged (Store) application"""
        kind = CandidateKind.APP_PACKAGE
        log_event(event_log.FOUND, f"{description}: {package_name}")
        if self.state.is_scan:
            return self._record(kind, description, package_name, CandidateStatus.FOUND)

        try:
            result = self.facilities.remove_package(package_name, self.operation_timeout)
        except OSError as e:
            log_event(event_log.ERROR, f"Failed to remove package {package_name}: {e}", logging.ERROR)
            return self._record(
                kind, description, package_name, CandidateStatus.FAILED, detail=str(e), fault=classify_fault(e)
            )

        if result.succeeded:
            log_event(event_log.REMOVE, f"Removed package {package_name}")
            return self._record(kind, description, package_name, CandidateStatus.REMOVED)

        if result.timed_out:
            detail, fault = f"timed out after {self.operation_timeout}s", FaultKind.TIMEOUT
        else:
            detail, fault = f"exit code {result.exit_code}: {result.output.strip()[:200]}", FaultKind.UNEXPECTED_FAULT
        log_event(event_log.ERROR, f"Failed to remove package {package_name}: {detail}", logging.ERROR)
        return self._record(kind, description, package_name, CandidateStatus.FAILED, detail=detail, fault=fault)

    def process_process(self, process: ProcessInfo, description: str = "Running interpreter") -> Candidate:
        """Terminate one running process"""
        kind = CandidateKind.PROCESS_HANDLE
        location = str(process.pid)
        identifier = f"{description} ({process.name})"
        log_event(event_log.FOUND, f"{identifier}: pid {process.pid} {process.exe}".rstrip())
        if self.state.is_scan:
            return self._record(kind, identifier, location, CandidateStatus.FOUND)

        if self.facilities.terminate_process(process.pid, PROCESS_TERMINATE_TIMEOUT):
            log_event(event_log.REMOVE, f"Terminated pid {process.pid} ({process.name})")
            return self._record(kind, identifier, location, CandidateStatus.REMOVED)

        log_event(event_log.ERROR, f"Could not terminate pid {process.pid} ({process.name})", logging.ERROR)
        return self._record(
            kind,
            identifier,
            location,
            CandidateStatus.FAILED,
            detail="termination refused",
            fault=FaultKind.PERMISSION_DENIED,
        )

    # -- helpers -------------------------------------------------------------

    def _notice(self, message: str):
        log_event(event_log.INFO, message)
        if self.notice_callback:
            self.notice_callback(message)

    def _record(
        self,
        kind: CandidateKind,
        description: str,
        location: str,
        status: CandidateStatus,
        size_bytes: int = 0,
        detail: str = "",
        fault: Optional[FaultKind] = None,
    ) -> Candidate:
        candidate = Candidate(
            kind=kind,
            identifier=description,
            location=location,
            status=status,
            size_bytes=size_bytes,
            detail=detail,
            fault=fault,
        )
        return self.ledger.record(candidate)
