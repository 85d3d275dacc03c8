#!/usr/bin/env python3
"""
Verification Scanner

Read-only check, run after an execute pass, that none of the catalog's
residual signals are still present: interpreters on the search path,
registry keys, environment variables and installation directories.
Calling verify() any number of times gives the same answer for the same
machine state.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

import event_log
from catalog import VerificationSignals, expand_location
from event_log import log_event
from platform_facilities import EnvironmentScope, SystemFacilities


@dataclass(frozen=True)
class ResidualSignal:
    kind: str
    name: str
    location: str = ""


@dataclass
class VerificationResult:
    residual_signals: list[ResidualSignal] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.residual_signals


class VerificationScanner:
    """Checks a fixed signal set and reports every signal still present"""

    def __init__(
        self,
        facilities: SystemFacilities,
        signals: VerificationSignals,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.facilities = facilities
        self.signals = signals
        self.environ = environ

    def verify(self) -> VerificationResult:
        result = VerificationResult()
        checks = (
            ("executable", self.signals.executables, self._check_executable),
            ("registry", self.signals.registry, self._check_registry),
            ("variable", self.signals.variables, self._check_variable),
            ("directory", self.signals.directories, self._check_directory),
        )
        for kind, names, check in checks:
            for name in names:
                try:
                    locations = check(name)
                except Exception as e:
                    # A check that cannot run proves nothing
                    log_event(event_log.VERIFY, f"Could not check {kind} {name}: {e}", logging.WARNING)
                    locations = [f"check failed: {e}"]
                for location in locations:
                    log_event(event_log.VERIFY, f"Residual {kind}: {name} {location}".rstrip())
                    result.residual_signals.append(ResidualSignal(kind, name, location))

        if result.clean:
            log_event(event_log.VERIFY, "No residual signals found")
        return result

    # -- individual checks ------------------------------------------------------

    def _check_executable(self, name: str) -> list[str]:
        resolved = self.facilities.which(name)
        return [resolved] if resolved else []

    def _check_registry(self, path: str) -> list[str]:
        return [path] if self.facilities.registry_key_exists(path) else []

    def _check_variable(self, name: str) -> list[str]:
        present = []
        for scope in EnvironmentScope:
            if self.facilities.get_environment_variable(name, scope) is not None:
                present.append(f"{scope.value} scope")
        return present

    def _check_directory(self, template: str) -> list[str]:
        return [p for p in expand_location(template, self.environ) if os.path.lexists(p)]
