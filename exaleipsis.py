#!/usr/bin/env python3
"""
Exaleipsis: Ancient Greek ἐξάλειψις (wiping out)

Removes every trace of Python from a Windows machine: Store packages,
MSI and EXE installs, environment variables and PATH entries,
installation directories, virtual environments, app execution aliases
and registry keys.

Nothing is changed unless execute mode is confirmed; --scan-only reports
what would be removed.

Usage:
    exaleipsis --scan-only                 # Report findings, change nothing
    exaleipsis                             # Remove (asks for confirmation)
    exaleipsis --yes --create-checkpoint   # Remove after a restore checkpoint
    exaleipsis --show-config               # Show persisted defaults and stats
"""

import argparse
import logging
import os
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional

import event_log
from auxiliary import format_bytes, format_path_for_display
from catalog import Catalog, expand_location, load_catalog
from console_ui import ConsoleUI
from environment_cleanup import EnvironmentCleanup
from event_log import log_event, setup_logging, shutdown_logging
from exaleipsis_config import MAX_DEPTH_RANGE, MIN_FREE_SPACE_RANGE, TIMEOUT_RANGE, ConfigManager, ExaleipsisConfig
from finding_ledger import CandidateKind, CandidateStatus, FindingLedger, RunMode, RunState
from path_safety import PathSafetyValidator
from platform_facilities import SystemFacilities, default_facilities
from removal_executor import RemovalExecutor
from report_writer import write_report
from uninstall_reconciler import UninstallReconciler
from venv_scanner import find_virtual_envs
from verification_scanner import VerificationResult, VerificationScanner

CHECKPOINT_DESCRIPTION = "Exaleipsis: before removing Python"
GIB = 1024**3


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass
class RunSettings:
    min_free_space_gb: int
    timeout_seconds: int
    max_depth: int
    retry_delay_seconds: int
    include_network: bool
    output_dir: Path


def resolve_settings(args: argparse.Namespace, config: ExaleipsisConfig) -> RunSettings:
    """Command-line flags override the persisted defaults"""

    def _pick(name: str, default):
        value = getattr(args, name, None)
        return default if value is None else value

    output_dir = getattr(args, "output_dir", None)
    return RunSettings(
        min_free_space_gb=_pick("min_free_space", config.min_free_space_gb),
        timeout_seconds=_pick("timeout", config.timeout_seconds),
        max_depth=_pick("max_depth", config.max_depth),
        retry_delay_seconds=config.retry_delay_seconds,
        include_network=bool(getattr(args, "include_network", False) or config.include_network),
        output_dir=Path(output_dir) if output_dir else Path.cwd(),
    )


# ---------------------------------------------------------------------------
# Exaleipsis
# ---------------------------------------------------------------------------


class Exaleipsis:
    """Run coordinator: owns the run state and sequences the sections"""

    def __init__(
        self,
        args: argparse.Namespace,
        facilities: Optional[SystemFacilities] = None,
        catalog: Optional[Catalog] = None,
        config_manager: Optional[ConfigManager] = None,
        ui: Optional[ConsoleUI] = None,
        validator: Optional[PathSafetyValidator] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.args = args
        self.ui = ui or ConsoleUI()
        self._shutdown_requested = False

        self.config_manager = config_manager or ConfigManager()
        self._config = self.config_manager.load()
        self.settings = resolve_settings(args, self._config)

        self.state = RunState(RunMode.SCAN if getattr(args, "scan_only", False) else RunMode.EXECUTE)
        self.ledger = FindingLedger(self.state)

        self.facilities = facilities
        self.catalog = catalog
        self.validator = validator
        self.environ = environ
        self.executor: Optional[RemovalExecutor] = None
        self.reconciler: Optional[UninstallReconciler] = None
        self.environment: Optional[EnvironmentCleanup] = None

        self.log_path: Optional[Path] = None
        self.report_path: Optional[Path] = None
        self.verification: Optional[VerificationResult] = None

    @property
    def is_scan(self) -> bool:
        return self.state.is_scan

    # -- signal handling ----------------------------------------------------

    def _signal_handler(self, signum, frame):
        if self._shutdown_requested:
            sys.exit(1)
        self._shutdown_requested = True
        self.ui.print_warning("\nShutdown requested... the current section will finish. Ctrl+C again to force quit.")

    def _install_signal_handlers(self) -> dict:
        previous = {signal.SIGINT: signal.signal(signal.SIGINT, self._signal_handler)}
        if hasattr(signal, "SIGTERM"):
            previous[signal.SIGTERM] = signal.signal(signal.SIGTERM, self._signal_handler)
        return previous

    @staticmethod
    def _restore_signal_handlers(previous: dict):
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    # -- setup ----------------------------------------------------------------

    def prepare(self):
        """Process-wide setup; a failure here ends the run"""
        if self.catalog is None:
            self.catalog = load_catalog()
        if self.facilities is None:
            self.facilities = default_facilities()
        if self.validator is None:
            self.validator = PathSafetyValidator()

        self.executor = RemovalExecutor(
            self.ledger,
            self.validator,
            self.facilities,
            include_network=self.settings.include_network,
            operation_timeout=self.settings.timeout_seconds,
            notice_callback=lambda message: self.ui.print_warning(f"  {message}"),
        )
        self.reconciler = UninstallReconciler(
            self.ledger,
            self.facilities,
            self.executor,
            timeout_seconds=self.settings.timeout_seconds,
            retry_delay_seconds=self.settings.retry_delay_seconds,
        )
        self.environment = EnvironmentCleanup(
            self.ledger,
            self.facilities,
            self.settings.output_dir,
            self.catalog.variables,
            self.catalog.path_patterns,
        )

    # -- config ---------------------------------------------------------------

    def show_config(self):
        config = self._config
        stats = config.stats
        config_file = format_path_for_display(str(self.config_manager.config_file))
        self.ui.print_header("Exaleipsis", f"Configuration in {config_file}")
        self.ui.show_configuration(
            {
                "Min free space": f"{config.min_free_space_gb} GB",
                "Timeout": f"{config.timeout_seconds}s",
                "Max depth": config.max_depth,
                "Retry delay": f"{config.retry_delay_seconds}s",
                "Network locations": "included" if config.include_network else "skipped",
                "Runs": stats.get("total_runs", 0),
                "Removed items": stats.get("total_removed", 0),
                "Reclaimed": format_bytes(stats.get("total_reclaimed_bytes", 0)),
                "Last run": config.last_run or "never",
            }
        )

    def _record_run(self):
        self._config.record_run(self.state.removed, self.state.total_size_bytes)
        try:
            self.config_manager.save(self._config)
        except OSError as e:
            self.ui.print_warning(f"Could not save run statistics: {e}")

    def _settings_table(self) -> dict:
        args = self.args
        return {
            "Mode": "scan only (nothing is changed)" if self.is_scan else "execute",
            "Output directory": format_path_for_display(str(self.settings.output_dir)),
            "Timeout": f"{self.settings.timeout_seconds}s",
            "Max depth": self.settings.max_depth,
            "Restore checkpoint": "yes" if getattr(args, "create_checkpoint", False) else "no",
            "Min free space": "not checked" if args.skip_disk_check else f"{self.settings.min_free_space_gb} GB",
            "Process check": "skipped" if args.skip_process_check else "yes",
            "Network locations": "included" if self.settings.include_network else "skipped",
        }

    # -- sections -------------------------------------------------------------

    def sections(self) -> list[tuple[str, Callable[[], None]]]:
        return [
            ("Restore checkpoint", self.create_checkpoint),
            ("Running interpreters", self.check_processes),
            ("Store packages", self.remove_packages),
            ("Installed programs", self.reconcile_programs),
            ("Environment variables", self.clean_environment),
            ("Installation directories", self.sweep_directories),
            ("Virtual environments", self.sweep_virtual_envs),
            ("App execution aliases", self.clean_aliases),
            ("Registry", self.sweep_registry),
        ]

    def run_sections(self):
        """Run every section in order; a fault ends only its own section"""
        sections = self.sections()
        for index, (title, action) in enumerate(sections, 1):
            if self._shutdown_requested:
                message = f"Shutdown requested, not running '{title}' and later sections"
                log_event(event_log.WARN, message, logging.WARNING)
                self.ui.print_warning(f"Stopped before '{title}'.")
                break

            self.ui.print_section(title, index, len(sections))
            log_event(event_log.SECTION, title)
            before = len(self.ledger)
            try:
                action()
            except Exception as e:
                log_event(event_log.ERROR, f"Section '{title}' aborted: {e}", logging.ERROR, exc_info=e)
                self.ui.print_error(f"  {title} aborted: {e}")
                continue

            added = self.state.ledger[before:]
            if added:
                self._print_section_result(added)

    def _print_section_result(self, added: list):
        counts: dict[CandidateStatus, int] = {}
        for candidate in added:
            counts[candidate.status] = counts.get(candidate.status, 0) + 1
        parts = [f"{count} {status.value.lower()}" for status, count in counts.items()]
        size = sum(c.size_bytes for c in added if c.status in (CandidateStatus.FOUND, CandidateStatus.REMOVED))
        size_note = f", {format_bytes(size)}" if size else ""
        self.ui.print_plain(f"  {', '.join(parts)}{size_note}")

    def create_checkpoint(self):
        if self.is_scan or not getattr(self.args, "create_checkpoint", False):
            self.ui.print_plain("  Not requested")
            return
        if not self.args.skip_disk_check and not self.check_disk_space():
            return

        self.ui.print_info("  Creating restore checkpoint...")
        if self.facilities.create_checkpoint(CHECKPOINT_DESCRIPTION):
            log_event(event_log.INFO, "Restore checkpoint created")
            self.ui.print_success("  Restore checkpoint created")
        else:
            log_event(event_log.WARN, "Restore checkpoint could not be created, continuing without", logging.WARNING)
            self.ui.print_warning("  Restore checkpoint could not be created, continuing without it")

    def check_disk_space(self) -> bool:
        """True if the system drive has the configured free space"""
        drive = self._system_drive()
        free = self.facilities.free_space_bytes(drive)
        required = self.settings.min_free_space_gb * GIB
        if free >= required:
            return True
        message = (
            f"Only {format_bytes(free)} free on {drive} (minimum {self.settings.min_free_space_gb} GB), "
            "skipping restore checkpoint"
        )
        log_event(event_log.WARN, message, logging.WARNING)
        self.ui.print_warning(f"  {message}")
        return False

    def _system_drive(self) -> str:
        env = os.environ if self.environ is None else self.environ
        drive = env.get("SystemDrive")
        return drive + "\\" if drive else os.path.abspath(os.sep)

    def check_processes(self):
        if self.args.skip_process_check:
            self.ui.print_plain("  Skipped")
            return
        for process in self.facilities.find_processes(self.catalog.process_names):
            self.executor.process_process(process)

    def remove_packages(self):
        for name in self.facilities.list_packages(self.catalog.package_patterns):
            self.executor.process_package(name, "Store package")

    def reconcile_programs(self):
        records = self.facilities.list_uninstall_records(self.catalog.program_patterns)
        for record in records:
            if self._shutdown_requested:
                break
            self.reconciler.attempt(record)
        self.reconciler.reconcile_orphans(records)

    def clean_environment(self):
        self.environment.run()
        if self.environment.backup_path:
            self.ui.print_plain(f"  Backup: {format_path_for_display(str(self.environment.backup_path))}")

    def sweep_directories(self):
        self._sweep_entries(self.catalog.directories)

    def clean_aliases(self):
        self._sweep_entries(self.catalog.aliases)

    def _sweep_entries(self, entries):
        for entry in entries:
            for location in expand_location(entry.location, self.environ):
                self.executor.process(location, entry.description, entry.kind)

    def sweep_virtual_envs(self):
        roots = [root for template in self.catalog.venv_roots for root in expand_location(template, self.environ)]
        found: list[str] = []

        progress = self.ui.create_activity_progress()
        with progress:
            task = progress.add_task("Searching...", total=None)
            for root in roots:
                display = format_path_for_display(root)

                def _update(count: int, display=display):
                    if count % 200 == 0:
                        progress.update(task, description=f"Searching {display}... {count} dirs")

                found.extend(
                    find_virtual_envs(
                        root,
                        self.settings.max_depth,
                        should_stop=lambda: self._shutdown_requested,
                        on_directory=_update,
                    )
                )

        # Overlapping roots report the same environment twice
        for venv in dict.fromkeys(found):
            self.executor.process(venv, "Virtual environment", CandidateKind.VIRTUAL_ENV)

    def sweep_registry(self):
        for entry in self.catalog.registry:
            self.executor.process_registry(entry.location, entry.description, entry.kind)

    # -- verification and report ------------------------------------------------

    def verify(self) -> VerificationResult:
        self.ui.print_section("Verification", 1, 1)
        log_event(event_log.SECTION, "Verification")
        scanner = VerificationScanner(self.facilities, self.catalog.verification, self.environ)
        self.verification = scanner.verify()
        self.ui.show_verification(self.verification.residual_signals)
        return self.verification

    def emit_report(self):
        try:
            self.report_path = write_report(self.state.ledger, self.settings.output_dir)
        except OSError as e:
            log_event(event_log.ERROR, f"Could not write report: {e}", logging.ERROR)
            self.ui.print_error(f"Could not write report: {e}")

        summary = self.ledger.summary()
        log_event(event_log.INFO, "Summary: " + ", ".join(f"{k}={v}" for k, v in summary.items()))
        self.ui.show_summary(summary, self.is_scan)
        self.ui.show_failures(self.ledger.entries_with(CandidateStatus.FAILED))
        self.ui.show_manual_actions(self.reconciler.manual_actions)

        self.ui.console.print()
        if self.report_path:
            self.ui.print_info(f"Report: {format_path_for_display(str(self.report_path))}")
        if self.log_path:
            self.ui.print_info(f"Log:    {format_path_for_display(str(self.log_path))}")

    # -- main entry point ----------------------------------------------------

    def run(self) -> int:
        if getattr(self.args, "show_config", False):
            self.show_config()
            return 0

        self.prepare()
        subtitle = "Scan only: nothing will be changed" if self.is_scan else "Python will be removed from this machine"
        self.ui.print_header("Exaleipsis", subtitle)
        self.ui.show_configuration(self._settings_table())

        if not self.is_scan:
            if not self.facilities.is_elevated():
                self.ui.print_warning("Not running as administrator: machine-wide items will likely fail.")
            if not getattr(self.args, "yes", False):
                self.ui.console.print()
                if not self.ui.confirm("Remove every Python installation found on this machine?", default=False):
                    self.ui.print_info("No changes made.")
                    return 0

        self.log_path = setup_logging(self.settings.output_dir, getattr(self.args, "verbose", False))
        previous_handlers = self._install_signal_handlers()
        try:
            log_event(event_log.INFO, f"Run started in {self.state.mode.value} mode")
            self.run_sections()
            if not self.is_scan and not self._shutdown_requested:
                try:
                    self.verify()
                except Exception as e:
                    log_event(event_log.ERROR, f"Verification aborted: {e}", logging.ERROR, exc_info=e)
                    self.ui.print_error(f"  Verification aborted: {e}")
            self.emit_report()
            log_event(event_log.INFO, "Run finished")
        finally:
            self._restore_signal_handlers(previous_handlers)
            shutdown_logging()

        if not self.is_scan:
            self._record_run()
        return 0


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _ranged_int(low: int, high: int):
    """argparse type accepting integers in [low, high]"""

    def parse(text: str) -> int:
        try:
            value = int(text)
        except ValueError:
            raise argparse.ArgumentTypeError(f"expected an integer, got {text!r}") from None
        if not low <= value <= high:
            raise argparse.ArgumentTypeError(f"must be between {low} and {high}, got {value}")
        return value

    return parse


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="exaleipsis",
        description="Exaleipsis: remove every trace of Python from a Windows machine",
    )
    parser.add_argument("--scan-only", action="store_true", help="Report what would be removed, change nothing")
    parser.add_argument("--create-checkpoint", action="store_true", help="Create a restore checkpoint first")
    parser.add_argument("--skip-process-check", action="store_true", help="Do not look for running interpreters")
    parser.add_argument("--skip-disk-check", action="store_true", help="Do not check free space before a checkpoint")
    parser.add_argument("--include-network", action="store_true", help="Also remove items on network locations")
    parser.add_argument(
        "--min-free-space",
        type=_ranged_int(*MIN_FREE_SPACE_RANGE),
        default=None,
        metavar="GB",
        help="Free space required for a checkpoint (1-1000, default 5)",
    )
    parser.add_argument(
        "--timeout",
        type=_ranged_int(*TIMEOUT_RANGE),
        default=None,
        metavar="SECONDS",
        help="Timeout for each uninstaller and package removal (60-3600, default 300)",
    )
    parser.add_argument(
        "--max-depth",
        type=_ranged_int(*MAX_DEPTH_RANGE),
        default=None,
        metavar="N",
        help="Virtual environment search depth (3-15, default 8)",
    )
    parser.add_argument("--output-dir", default=None, help="Where report, log and backup are written")
    parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation before removing")
    parser.add_argument("--show-config", action="store_true", help="Show persisted defaults and statistics")
    parser.add_argument("--verbose", action="store_true", help="Write debug events to the log")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        app = Exaleipsis(args)
        return app.run()
    except Exception as e:
        ConsoleUI().print_error(f"Exaleipsis stopped: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
