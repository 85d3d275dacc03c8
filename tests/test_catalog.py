from __future__ import annotations

from pathlib import Path

import pytest

from catalog import CATALOG_FILE, Catalog, CatalogError, expand_location, expand_variables, load_catalog
from environment_cleanup import matches_any
from finding_ledger import CandidateKind


def _write(path: Path, content: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def test_shipped_catalog_loads() -> None:
    catalog = load_catalog(CATALOG_FILE)

    assert isinstance(catalog, Catalog)
    assert "python.exe" in catalog.process_names
    assert "PYTHONPATH" in catalog.variables
    assert catalog.directories and catalog.registry and catalog.aliases
    assert {e.kind for e in catalog.registry} == {CandidateKind.REGISTRY_KEY}
    assert CandidateKind.FILE in {e.kind for e in catalog.directories}
    assert catalog.verification.executables
    assert all(e.location for e in catalog.directories + catalog.aliases + catalog.registry)


@pytest.mark.parametrize(
    "entry",
    [
        "C:\\Python312\\",
        "C:\\Python312\\Scripts\\",
        "C:\\Users\\ada\\AppData\\Local\\Programs\\Python\\Python314\\Scripts",
        "C:\\Program Files\\Python313",
        "C:\\Users\\ada\\AppData\\Roaming\\Python\\Python314\\Scripts",
    ],
)
def test_shipped_path_patterns_match_python_entries(entry: str) -> None:
    assert matches_any(entry, load_catalog().path_patterns)


@pytest.mark.parametrize(
    "entry",
    ["C:\\Windows\\system32", "C:\\Program Files\\Git\\cmd", "C:\\Users\\ada\\AppData\\Local\\Microsoft\\WindowsApps"],
)
def test_shipped_path_patterns_keep_other_entries(entry: str) -> None:
    assert not matches_any(entry, load_catalog().path_patterns)


def test_minimal_catalog_uses_defaults(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "catalog.toml",
        '[[registry]]\nlocation = "HKCU\\\\Software\\\\Python"\n\n'
        '[[aliases]]\nlocation = "%LOCALAPPDATA%\\\\Microsoft\\\\WindowsApps\\\\python.exe"\n',
    )

    catalog = load_catalog(path)

    assert catalog.registry[0].kind is CandidateKind.REGISTRY_KEY
    assert catalog.registry[0].location == "HKCU\\Software\\Python"
    assert catalog.aliases[0].kind is CandidateKind.FILE
    assert catalog.directories == []
    assert catalog.process_names == []


def test_missing_catalog_raises(tmp_path: Path) -> None:
    with pytest.raises(CatalogError):
        load_catalog(tmp_path / "missing.toml")


def test_malformed_catalog_raises(tmp_path: Path) -> None:
    with pytest.raises(CatalogError):
        load_catalog(_write(tmp_path / "bad.toml", "[processes\nnames = 3"))


def test_unknown_kind_raises(tmp_path: Path) -> None:
    path = _write(tmp_path / "catalog.toml", '[[directories]]\nlocation = "x"\nkind = "symlink"\n')

    with pytest.raises(CatalogError, match="symlink"):
        load_catalog(path)


def test_entry_without_location_raises(tmp_path: Path) -> None:
    path = _write(tmp_path / "catalog.toml", '[[registry]]\ndescription = "nowhere"\n')

    with pytest.raises(CatalogError):
        load_catalog(path)


def test_expand_variables_is_case_insensitive() -> None:
    env = {"LocalAppData": "C:\\Users\\ada\\AppData\\Local"}

    assert expand_variables("%LOCALAPPDATA%\\pip", env) == "C:\\Users\\ada\\AppData\\Local\\pip"
    assert expand_variables("C:\\Python314", env) == "C:\\Python314"


def test_undefined_or_empty_variable_expands_to_nothing() -> None:
    assert expand_variables("%ProgramFiles(x86)%\\Python*", {}) is None
    assert expand_variables("%APPDATA%\\Python", {"APPDATA": ""}) is None
    assert expand_location("%APPDATA%\\Python", {}) == []


def test_expand_location_globs_existing_matches(tmp_path: Path) -> None:
    (tmp_path / "Python312").mkdir()
    (tmp_path / "Python314").mkdir()
    (tmp_path / "PythonTools").mkdir()
    _write(tmp_path / ".python_history")
    env = {"ROOT": str(tmp_path)}

    assert expand_location("%ROOT%/Python[0-9]*", env) == [str(tmp_path / "Python312"), str(tmp_path / "Python314")]
    assert expand_location("%ROOT%/.python*", env) == [str(tmp_path / ".python_history")]
    assert expand_location("%ROOT%/missing", env) == [str(tmp_path) + "/missing"]
