#!/usr/bin/env python3
"""
Environment Cleanup

Clears Python-related persistent environment variables and drops Python
entries from the user and machine PATH. A JSON backup of every tracked
value is written before anything is cleared; if the backup cannot be
written, nothing is cleared.
"""

import fnmatch
import json
import logging
import pathlib
from datetime import datetime, timezone
from typing import Optional

import event_log
from auxiliary import file_stamp
from event_log import log_event
from finding_ledger import Candidate, CandidateKind, CandidateStatus, FaultKind, FindingLedger, classify_fault
from platform_facilities import ENVIRONMENT_KEYS, EnvironmentScope, SystemFacilities

PATH_VARIABLE = "Path"
PATH_SEPARATOR = ";"


def matches_any(entry: str, patterns: list[str]) -> bool:
    """Case-insensitive match of one PATH entry, with or without its trailing separator"""
    text = entry.strip().strip('"').casefold()
    if not text:
        return False
    candidates = {text, text.rstrip("\\/")}
    return any(fnmatch.fnmatchcase(c, p.casefold()) for c in candidates for p in patterns)


def split_path_value(value: str, patterns: list[str]) -> tuple[list[str], list[str]]:
    """Split a PATH value into (kept entries, dropped entries), order preserved"""
    kept: list[str] = []
    dropped: list[str] = []
    for entry in value.split(PATH_SEPARATOR):
        (dropped if matches_any(entry, patterns) else kept).append(entry)
    return kept, dropped


class EnvironmentCleanup:
    """Backs up, then clears, Python environment variables and PATH entries"""

    def __init__(
        self,
        ledger: FindingLedger,
        facilities: SystemFacilities,
        output_dir: pathlib.Path,
        variables: list[str],
        path_patterns: list[str],
    ):
        self.ledger = ledger
        self.facilities = facilities
        self.output_dir = output_dir
        self.variables = variables
        self.path_patterns = path_patterns
        self.backup_path: Optional[pathlib.Path] = None

    # -- backup ---------------------------------------------------------------

    def collect(self) -> dict:
        """Current values of every tracked variable plus both PATH values"""
        snapshot: dict = {
            "created_at": datetime.now(timezone.utc).isoformat(),
            "variables": {},
            "user_path": self.facilities.get_environment_variable(PATH_VARIABLE, EnvironmentScope.USER),
            "machine_path": self.facilities.get_environment_variable(PATH_VARIABLE, EnvironmentScope.MACHINE),
        }
        for scope in EnvironmentScope:
            for name in self.variables:
                value = self.facilities.get_environment_variable(name, scope)
                if value is not None:
                    snapshot["variables"][f"{scope.value}:{name}"] = value
        return snapshot

    def write_backup(self, snapshot: dict) -> pathlib.Path:
        """Write the snapshot; failure propagates so nothing gets cleared"""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / f"exaleipsis_env_backup_{file_stamp()}.json"
        with path.open("w", encoding="utf-8") as f:
            json.dump(snapshot, f, indent=2)
        log_event(event_log.BACKUP, f"Environment backup written to {path} ({len(snapshot['variables'])} variables)")
        self.backup_path = path
        return path

    # -- cleanup --------------------------------------------------------------

    def run(self) -> list[Candidate]:
        snapshot = self.collect()
        self.write_backup(snapshot)

        results: list[Candidate] = []
        for scope in EnvironmentScope:
            for name in self.variables:
                key = f"{scope.value}:{name}"
                if key in snapshot["variables"]:
                    results.append(self._clear_variable(name, scope, snapshot["variables"][key]))

        results.extend(self._filter_path(EnvironmentScope.USER, snapshot["user_path"]))
        results.extend(self._filter_path(EnvironmentScope.MACHINE, snapshot["machine_path"]))
        return results

    def _clear_variable(self, name: str, scope: EnvironmentScope, value: str) -> Candidate:
        location = f"{ENVIRONMENT_KEYS[scope]}\\{name}"
        description = f"{scope.value.capitalize()} variable {name}"
        log_event(event_log.FOUND, f"{description} = {value}")
        if self.ledger.state.is_scan:
            return self._record(description, location, CandidateStatus.FOUND)

        try:
            self.facilities.delete_environment_variable(name, scope)
        except FileNotFoundError:
            log_event(event_log.REMOVE, f"{description} already cleared")
        except OSError as e:
            log_event(event_log.ERROR, f"Could not clear {description}: {e}", logging.ERROR)
            return self._record(description, location, CandidateStatus.FAILED, str(e), classify_fault(e))
        else:
            log_event(event_log.REMOVE, f"Cleared {description}")
        return self._record(description, location, CandidateStatus.REMOVED)

    def _filter_path(self, scope: EnvironmentScope, value: Optional[str]) -> list[Candidate]:
        """Drop matching PATH entries; one ledger entry per dropped entry"""
        if not value:
            return []
        kept, dropped = split_path_value(value, self.path_patterns)
        if not dropped:
            return []

        location = f"{ENVIRONMENT_KEYS[scope]}\\{PATH_VARIABLE}"
        descriptions = [f"{scope.value.capitalize()} PATH entry {entry}" for entry in dropped]
        for description in descriptions:
            log_event(event_log.FOUND, description)
        if self.ledger.state.is_scan:
            return [self._record(d, location, CandidateStatus.FOUND) for d in descriptions]

        try:
            self.facilities.set_environment_variable(PATH_VARIABLE, PATH_SEPARATOR.join(kept), scope)
        except OSError as e:
            log_event(event_log.ERROR, f"Could not rewrite {scope.value} PATH: {e}", logging.ERROR)
            fault = classify_fault(e)
            return [self._record(d, location, CandidateStatus.FAILED, str(e), fault) for d in descriptions]

        log_event(event_log.REMOVE, f"Removed {len(dropped)} entries from {scope.value} PATH")
        return [self._record(d, location, CandidateStatus.REMOVED) for d in descriptions]

    def _record(
        self,
        description: str,
        location: str,
        status: CandidateStatus,
        detail: str = "",
        fault: Optional[FaultKind] = None,
    ) -> Candidate:
        return self.ledger.record(
            Candidate(
                kind=CandidateKind.REGISTRY_VALUE,
                identifier=description,
                location=location,
                status=status,
                detail=detail,
                fault=fault,
            )
        )
