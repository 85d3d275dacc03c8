#!/usr/bin/env python3
"""
Uninstall Reconciler

Drives the uninstallers registered for traditional (MSI and EXE) installs
and, once they have run, decides which cached uninstall entries are
orphaned and may have their registry key removed.

Two command shapes are understood:

- Windows Installer: ``MsiExec.exe /X{PRODUCT-CODE}`` is replayed as a
  silent ``msiexec /x`` with the product code.
- Executable: the uninstaller path is isolated from the raw command with a
  fixed precedence (quoted path, bare leading path, first embedded
  ``X:\\...\\name.exe``) and run with a list of silent argument forms.
"""

import logging
import ntpath
import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import event_log
from event_log import log_event
from finding_ledger import Candidate, CandidateKind, CandidateStatus, FaultKind, FindingLedger
from platform_facilities import CommandResult, SystemFacilities, UninstallRecord
from removal_executor import RemovalExecutor

# ---------------------------------------------------------------------------
# Command parsing
# ---------------------------------------------------------------------------

PRODUCT_CODE_PATTERN = re.compile(
    r"\{[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12}\}"
)
_QUOTED_EXECUTABLE = re.compile(r'^"([^"]*\.exe)"', re.IGNORECASE)
_LEADING_EXECUTABLE = re.compile(r'^([^"\s]+\.exe)(?=\s|$)', re.IGNORECASE)
_EMBEDDED_EXECUTABLE = re.compile(r"[A-Za-z]:\\.*?\.exe", re.IGNORECASE)


def extract_product_code(command: str) -> Optional[str]:
    """Return the first {GUID} product code in a command, upper-cased"""
    match = PRODUCT_CODE_PATTERN.search(command or "")
    return match.group(0).upper() if match else None


def is_msi_command(command: str) -> bool:
    return "msiexec" in (command or "").lower() and extract_product_code(command) is not None


def extract_executable_path(command: str) -> Optional[str]:
    """Isolate the uninstaller executable from a raw uninstall command

    Precedence:
        1. a leading double-quoted run ending in .exe
        2. a leading run without quotes or whitespace ending in .exe
        3. the first X:\\...\\name.exe anywhere in the command
    Anything else yields None. The command is never split on whitespace,
    which would truncate paths containing spaces.
    """
    if not command:
        return None
    text = command.strip()

    match = _QUOTED_EXECUTABLE.match(text)
    if match:
        return match.group(1)

    match = _LEADING_EXECUTABLE.match(text)
    if match:
        return match.group(1)

    match = _EMBEDDED_EXECUTABLE.search(text)
    if match:
        return match.group(0)
    return None


# ---------------------------------------------------------------------------
# Windows Installer exit codes
# ---------------------------------------------------------------------------

MSI_SUCCESS = 0
MSI_SUCCESS_REBOOT_REQUIRED = 3010
MSI_ANOTHER_INSTALL_IN_PROGRESS = 1618

MSI_DIAGNOSTICS = {
    5: "insufficient permission (access denied)",
    32: "package in use by another process",
    1602: "cancelled by the user",
    1603: "fatal error during uninstall",
    1605: "product is not installed (already removed)",
    1619: "corrupt package (could not be opened)",
    1620: "corrupt package (invalid installation package)",
    1625: "insufficient permission (prohibited by system policy)",
    1633: "platform mismatch (package not supported on this processor)",
    1730: "insufficient permission (administrator rights required)",
}

SILENT_ARGUMENT_FORMS = (
    ("/uninstall", "/quiet"),
    ("/S",),
    ("/SILENT",),
    ("/VERYSILENT", "/SUPPRESSMSGBOXES", "/NORESTART"),
    ("/quiet",),
)


class UninstallStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class UninstallOutcome:
    status: UninstallStatus
    code: Optional[int] = None
    reason: str = ""
    hint: str = ""
    fault: Optional[FaultKind] = None

    @classmethod
    def success(cls, code: int = 0, reason: str = "") -> "UninstallOutcome":
        return cls(UninstallStatus.SUCCESS, code=code, reason=reason)

    @classmethod
    def failed(
        cls, code: Optional[int], reason: str, hint: str = "", fault: FaultKind = FaultKind.UNEXPECTED_FAULT
    ) -> "UninstallOutcome":
        return cls(UninstallStatus.FAILED, code=code, reason=reason, hint=hint, fault=fault)

    @classmethod
    def skipped(cls, reason: str, hint: str = "", fault: Optional[FaultKind] = None) -> "UninstallOutcome":
        return cls(UninstallStatus.SKIPPED, reason=reason, hint=hint, fault=fault)


_STATUS_MAP = {
    UninstallStatus.SUCCESS: CandidateStatus.REMOVED,
    UninstallStatus.FAILED: CandidateStatus.FAILED,
    UninstallStatus.SKIPPED: CandidateStatus.SKIPPED,
}


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


class UninstallReconciler:
    """Runs uninstallers and reconciles orphaned uninstall entries"""

    def __init__(
        self,
        ledger: FindingLedger,
        facilities: SystemFacilities,
        executor: RemovalExecutor,
        timeout_seconds: float = 300,
        retry_delay_seconds: float = 30,
        path_exists: Callable[[str], bool] = os.path.exists,
    ):
        self.ledger = ledger
        self.facilities = facilities
        self.executor = executor
        self.timeout_seconds = timeout_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self._exists = path_exists
        self.manual_actions: list[tuple[str, str]] = []

    # -- uninstall attempts --------------------------------------------------

    def attempt(self, record: UninstallRecord) -> UninstallOutcome:
        """Uninstall one program and record the outcome in the ledger"""
        if self.ledger.state.is_scan:
            log_event(event_log.FOUND, f"Installed program: {record.display_name} ({record.raw_uninstall_command})")
            self._record(record, CandidateStatus.FOUND)
            return UninstallOutcome.skipped("scan mode")

        try:
            outcome = self._attempt(record)
        except Exception as e:
            log_event(event_log.ERROR, f"Unexpected fault uninstalling {record.display_name}: {e}", logging.ERROR, e)
            outcome = UninstallOutcome.failed(None, f"unexpected fault: {e}", hint=record.raw_uninstall_command)

        self._report(record, outcome)
        detail = outcome.reason if not outcome.hint else f"{outcome.reason}; manual action: {outcome.hint}"
        self._record(record, _STATUS_MAP[outcome.status], detail=detail, fault=outcome.fault)
        return outcome

    def _attempt(self, record: UninstallRecord) -> UninstallOutcome:
        # Records are read once; a related uninstaller may have removed this one since
        if not self.facilities.registry_key_exists(record.registry_handle):
            return UninstallOutcome.success(reason="already removed by a related uninstaller")

        command = (record.raw_uninstall_command or "").strip()
        if not command:
            return UninstallOutcome.skipped("no uninstall command", fault=FaultKind.UNKNOWN_COMMAND_FORMAT)

        if is_msi_command(command):
            return self._uninstall_msi(extract_product_code(command), command)
        return self._uninstall_executable(command)

    def _uninstall_msi(self, product_code: str, command: str) -> UninstallOutcome:
        argv = ["msiexec.exe", "/x", product_code, "/qn", "/norestart"]
        result = self.facilities.run_command(argv, self.timeout_seconds)

        if not result.timed_out and result.exit_code == MSI_ANOTHER_INSTALL_IN_PROGRESS:
            log_event(
                event_log.INFO,
                f"Another installation is in progress, retrying {product_code} in {self.retry_delay_seconds}s",
            )
            self.facilities.sleep(self.retry_delay_seconds)
            result = self.facilities.run_command(argv, self.timeout_seconds)
            if not result.timed_out and result.exit_code == MSI_ANOTHER_INSTALL_IN_PROGRESS:
                return UninstallOutcome.failed(
                    MSI_ANOTHER_INSTALL_IN_PROGRESS,
                    "another installation is still in progress",
                    hint=command,
                    fault=FaultKind.TRANSIENT_RESOURCE_CONTENTION,
                )

        return self._msi_outcome(result, command)

    def _msi_outcome(self, result: CommandResult, command: str) -> UninstallOutcome:
        if result.timed_out:
            return UninstallOutcome.failed(
                None, f"timed out after {self.timeout_seconds}s", hint=command, fault=FaultKind.TIMEOUT
            )
        if result.exit_code == MSI_SUCCESS:
            return UninstallOutcome.success(MSI_SUCCESS)
        if result.exit_code == MSI_SUCCESS_REBOOT_REQUIRED:
            return UninstallOutcome.success(MSI_SUCCESS_REBOOT_REQUIRED, "reboot required to finish")
        if result.exit_code is None:
            return UninstallOutcome.failed(None, f"could not launch msiexec: {result.output.strip()}", hint=command)

        reason = MSI_DIAGNOSTICS.get(result.exit_code, f"unexpected exit code {result.exit_code}")
        fault = FaultKind.PERMISSION_DENIED if "permission" in reason else FaultKind.UNEXPECTED_FAULT
        return UninstallOutcome.failed(result.exit_code, reason, hint=command, fault=fault)

    def _uninstall_executable(self, command: str) -> UninstallOutcome:
        executable = extract_executable_path(command)
        if executable is None:
            return UninstallOutcome.skipped(
                "path not extractable", hint=command, fault=FaultKind.UNKNOWN_COMMAND_FORMAT
            )
        if not self._exists(executable):
            return UninstallOutcome.skipped(
                f"uninstaller not found: {executable}", hint=command, fault=FaultKind.NOT_FOUND
            )

        last: Optional[CommandResult] = None
        for form in SILENT_ARGUMENT_FORMS:
            result = self.facilities.run_command([executable, *form], self.timeout_seconds)
            if result.succeeded:
                return UninstallOutcome.success(0, f"silent uninstall with {' '.join(form)}")
            state = "timed out" if result.timed_out else f"exit code {result.exit_code}"
            log_event(event_log.INFO, f"{executable} {' '.join(form)}: {state}", logging.DEBUG)
            last = result

        fault = FaultKind.TIMEOUT if last is not None and last.timed_out else FaultKind.UNEXPECTED_FAULT
        return UninstallOutcome.failed(
            last.exit_code if last else None, "every silent uninstall form failed", hint=command, fault=fault
        )

    # -- orphan reconciliation -----------------------------------------------

    def is_orphaned(self, record: UninstallRecord) -> bool:
        """True only when both the install location and the uninstaller are gone

        An empty or unparsable field is no evidence of absence.
        """
        location = (record.install_location or "").strip().strip('"')
        if not location or self._exists(location):
            return False

        executable = extract_executable_path(record.raw_uninstall_command)
        if executable is None or not (ntpath.isabs(executable) or os.path.isabs(executable)):
            return False
        return not self._exists(executable)

    def reconcile_orphans(self, records: list[UninstallRecord]) -> list[Candidate]:
        """Delete the registry entries of cached records that are orphaned"""
        results: list[Candidate] = []
        for record in records:
            if not self.is_orphaned(record):
                continue
            candidate = self.executor.process_registry(
                record.registry_handle,
                f"Orphaned uninstall entry ({record.display_name})",
                CandidateKind.REGISTRY_KEY,
            )
            if candidate is not None:
                results.append(candidate)
        return results

    # -- helpers -------------------------------------------------------------

    def _report(self, record: UninstallRecord, outcome: UninstallOutcome):
        name = record.display_name
        if outcome.status is UninstallStatus.SUCCESS:
            suffix = f" ({outcome.reason})" if outcome.reason else ""
            log_event(event_log.REMOVE, f"Uninstalled {name}{suffix}")
            return

        code = f" [exit {outcome.code}]" if outcome.code is not None else ""
        if outcome.status is UninstallStatus.FAILED:
            log_event(event_log.ERROR, f"Uninstall of {name} failed{code}: {outcome.reason}", logging.ERROR)
        else:
            log_event(event_log.SKIP, f"Uninstall of {name} skipped: {outcome.reason}")
        if outcome.hint:
            self.manual_actions.append((name, outcome.hint))
            log_event(event_log.WARN, f"Manual action for {name}: {outcome.hint}", logging.WARNING)

    def _record(
        self, record: UninstallRecord, status: CandidateStatus, detail: str = "", fault: Optional[FaultKind] = None
    ):
        self.ledger.record(
            Candidate(
                kind=CandidateKind.PROGRAM,
                identifier=record.display_name,
                location=record.registry_handle,
                status=status,
                detail=detail,
                fault=fault,
            )
        )
