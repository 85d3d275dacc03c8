#!/usr/bin/env python3
"""
Target Catalog

Loads the declarative table of everything Exaleipsis looks for from
exaleipsis_catalog.toml and expands its location templates.

Locations use %VAR% references to environment variables; directory and
alias locations may also contain glob wildcards.
"""

import glob
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

import tomllib

from finding_ledger import CandidateKind

CATALOG_FILE = Path(__file__).parent / "exaleipsis_catalog.toml"

_KIND_MAP = {
    "directory": CandidateKind.DIRECTORY,
    "file": CandidateKind.FILE,
    "key": CandidateKind.REGISTRY_KEY,
    "value": CandidateKind.REGISTRY_VALUE,
}
_VARIABLE = re.compile(r"%([^%]+)%")
_GLOB_CHARS = ("*", "?", "[")


class CatalogError(Exception):
    """The catalog file is missing or malformed"""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class TargetEntry:
    kind: CandidateKind
    location: str
    description: str = ""


@dataclass
class VerificationSignals:
    """Fixed signal set that must be absent after a successful run"""

    executables: list[str] = field(default_factory=list)
    registry: list[str] = field(default_factory=list)
    variables: list[str] = field(default_factory=list)
    directories: list[str] = field(default_factory=list)


@dataclass
class Catalog:
    process_names: list[str] = field(default_factory=list)
    package_patterns: list[str] = field(default_factory=list)
    program_patterns: list[str] = field(default_factory=list)
    variables: list[str] = field(default_factory=list)
    path_patterns: list[str] = field(default_factory=list)
    directories: list[TargetEntry] = field(default_factory=list)
    venv_roots: list[str] = field(default_factory=list)
    aliases: list[TargetEntry] = field(default_factory=list)
    registry: list[TargetEntry] = field(default_factory=list)
    verification: VerificationSignals = field(default_factory=VerificationSignals)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _entries(items: list[dict], default_kind: str, section: str) -> list[TargetEntry]:
    entries: list[TargetEntry] = []
    for item in items:
        kind_name = item.get("kind", default_kind)
        if kind_name not in _KIND_MAP:
            raise CatalogError(f"Unknown kind {kind_name!r} in [{section}]")
        if not item.get("location"):
            raise CatalogError(f"Entry without location in [{section}]")
        entries.append(TargetEntry(_KIND_MAP[kind_name], item["location"], item.get("description", "")))
    return entries


def load_catalog(path: Path = CATALOG_FILE) -> Catalog:
    """Load the target catalog from a TOML file

    Raises CatalogError when the file cannot be read or parsed.
    """
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise CatalogError(f"Cannot load catalog {path}: {e}") from e

    env = data.get("environment", {})
    checks = data.get("verification", {})
    return Catalog(
        process_names=data.get("processes", {}).get("names", []),
        package_patterns=data.get("packages", {}).get("patterns", []),
        program_patterns=data.get("programs", {}).get("name_patterns", []),
        variables=env.get("variables", []),
        path_patterns=env.get("path_patterns", []),
        directories=_entries(data.get("directories", []), "directory", "directories"),
        venv_roots=data.get("venv_roots", {}).get("locations", []),
        aliases=_entries(data.get("aliases", []), "file", "aliases"),
        registry=_entries(data.get("registry", []), "key", "registry"),
        verification=VerificationSignals(
            executables=checks.get("executables", []),
            registry=checks.get("registry", []),
            variables=checks.get("variables", []),
            directories=checks.get("directories", []),
        ),
    )


# ---------------------------------------------------------------------------
# Location templates
# ---------------------------------------------------------------------------


def expand_variables(template: str, environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Replace %VAR% references; None if any referenced variable is undefined"""
    env = os.environ if environ is None else environ
    # Windows variable names are case-insensitive
    lookup = {name.upper(): value for name, value in env.items()}
    missing: list[str] = []

    def _substitute(match: re.Match) -> str:
        value = lookup.get(match.group(1).upper())
        if not value:
            missing.append(match.group(1))
            return ""
        return value

    expanded = _VARIABLE.sub(_substitute, template)
    return None if missing else expanded


def expand_location(template: str, environ: Optional[Mapping[str, str]] = None) -> list[str]:
    """Expand a location template into the concrete paths it currently names

    Templates referencing undefined variables expand to nothing. Glob
    templates expand to their existing matches, plain templates to
    themselves whether or not they exist.
    """
    expanded = expand_variables(template, environ)
    if not expanded:
        return []
    if any(ch in expanded for ch in _GLOB_CHARS):
        return sorted(glob.glob(expanded, include_hidden=True))
    return [expanded]
