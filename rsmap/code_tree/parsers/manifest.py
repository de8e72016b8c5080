"""Cargo.toml reader: discovers the compilation units of a project or workspace."""

from __future__ import annotations

from pathlib import Path

from ...errors import DiscoveryError
from .models import UnitKind, UnitMetadata

# ── TOML loading (stdlib 3.11+, tomli fallback for 3.10) ─────────────

_tomllib = None


def _load_toml(path: Path) -> dict:
    """Load a TOML file, using stdlib tomllib or tomli fallback."""
    global _tomllib
    if _tomllib is None:
        try:
            import tomllib as _tl
        except ModuleNotFoundError:
            try:
                import tomli as _tl  # type: ignore[no-redef]
            except ImportError:
                raise ImportError(
                    "TOML parsing requires Python 3.11+ or the 'tomli' package. "
                    "Install with: pip install tomli"
                ) from None
        _tomllib = _tl
    with open(path, "rb") as f:
        return _tomllib.load(f)


def _read_cargo_toml(manifest_path: Path) -> dict:
    if not manifest_path.is_file():
        raise DiscoveryError(f"No Cargo.toml found at {manifest_path}")
    try:
        return _load_toml(manifest_path)
    except OSError as exc:
        raise DiscoveryError(f"Cannot read {manifest_path}: {exc}") from exc
    except ValueError as exc:
        # tomllib/tomli TOMLDecodeError subclasses ValueError
        raise DiscoveryError(f"Malformed TOML in {manifest_path}: {exc}") from exc


def _inherited(package: dict, key: str, workspace_package: dict, default=None):
    """Resolve ``key.workspace = true`` against [workspace.package]."""
    value = package.get(key, default)
    if isinstance(value, dict) and value.get("workspace") is True:
        return workspace_package.get(key, default)
    return value


# ── Cargo.toml ────────────────────────────────────────────────────────


class CargoTomlReader:
    """Reads one Cargo.toml [package] into lib/bin/proc-macro unit metadata."""

    manifest_filename = "Cargo.toml"

    def read(self, package_dir: Path, data: dict,
             workspace_package: dict | None = None) -> list[UnitMetadata]:
        workspace_package = workspace_package or {}
        manifest_path = package_dir / self.manifest_filename
        package = data.get("package", {})
        name = package.get("name")
        if not name:
            raise DiscoveryError(f"[package] has no name in {manifest_path}")

        version = str(_inherited(package, "version", workspace_package, "0.0.0"))
        edition = str(_inherited(package, "edition", workspace_package, "2015"))
        deps = list(data.get("dependencies", {}).keys())

        def unit(unit_name: str, kind: UnitKind, root_file: Path) -> UnitMetadata:
            return UnitMetadata(
                name=unit_name, kind=kind, edition=edition, version=version,
                root_file=root_file, manifest_dir=package_dir,
                external_deps=list(deps),
            )

        units: list[UnitMetadata] = []

        # Library target
        lib = data.get("lib", {})
        lib_path = package_dir / lib.get("path", "src/lib.rs")
        if "lib" in data or lib_path.is_file():
            if not lib_path.is_file():
                raise DiscoveryError(
                    f"Library root {lib_path} declared in {manifest_path} does not exist"
                )
            is_proc_macro = lib.get("proc-macro", lib.get("proc_macro", False))
            units.append(unit(
                lib.get("name", name.replace("-", "_")),
                UnitKind.PROC_MACRO if is_proc_macro else UnitKind.LIB,
                lib_path,
            ))

        # Binary targets: explicit [[bin]] first, then Cargo's auto-discovery
        bins: dict[str, Path] = {}
        for entry in data.get("bin", []):
            bin_name = entry.get("name")
            if not bin_name:
                raise DiscoveryError(f"[[bin]] without a name in {manifest_path}")
            if "path" in entry:
                bins[bin_name] = package_dir / entry["path"]
            else:
                bins[bin_name] = self._default_bin_path(package_dir, name, bin_name)

        if package.get("autobins", True):
            for bin_name, bin_path in self._discover_bins(package_dir, name):
                bins.setdefault(bin_name, bin_path)

        for bin_name, bin_path in bins.items():
            if not bin_path.is_file():
                raise DiscoveryError(
                    f"Binary root {bin_path} for `{bin_name}` does not exist"
                )
            units.append(unit(bin_name, UnitKind.BIN, bin_path))

        if not units:
            raise DiscoveryError(f"No lib or bin targets found for {manifest_path}")
        return units

    @staticmethod
    def _default_bin_path(package_dir: Path, package_name: str, bin_name: str) -> Path:
        src = package_dir / "src"
        for candidate in (src / "bin" / f"{bin_name}.rs",
                          src / "bin" / bin_name / "main.rs"):
            if candidate.is_file():
                return candidate
        return src / "main.rs" if bin_name == package_name else src / "bin" / f"{bin_name}.rs"

    @staticmethod
    def _discover_bins(package_dir: Path, package_name: str):
        src = package_dir / "src"
        if (src / "main.rs").is_file():
            yield package_name, src / "main.rs"
        bin_dir = src / "bin"
        if not bin_dir.is_dir():
            return
        for entry in sorted(bin_dir.iterdir()):
            if entry.is_file() and entry.suffix == ".rs":
                yield entry.stem, entry
            elif entry.is_dir() and (entry / "main.rs").is_file():
                yield entry.name, entry / "main.rs"


# ── Detection & reading ───────────────────────────────────────────────


def _workspace_members(project_root: Path, workspace: dict) -> list[Path]:
    excluded = set()
    for pattern in workspace.get("exclude", []):
        excluded.update(p.resolve() for p in project_root.glob(pattern))
    members = []
    for member_glob in workspace.get("members", []):
        for member_dir in sorted(project_root.glob(member_glob)):
            if member_dir.is_dir() and member_dir.resolve() not in excluded:
                members.append(member_dir)
    return members


def read_manifest(project_root) -> list[UnitMetadata]:
    """Read Cargo.toml at project_root and return every compilation unit.

    Handles single packages, virtual workspaces and packages that are also
    workspace roots. Raises DiscoveryError for a missing or malformed
    manifest.
    """
    project_root = Path(project_root)
    reader = CargoTomlReader()
    data = _read_cargo_toml(project_root / reader.manifest_filename)

    workspace = data.get("workspace", {})
    workspace_package = workspace.get("package", {})
    if "package" not in data and not workspace:
        raise DiscoveryError(
            f"{project_root / reader.manifest_filename} has neither [package] nor [workspace]"
        )

    units: list[UnitMetadata] = []
    if "package" in data:
        units.extend(reader.read(project_root, data, workspace_package))

    for member_dir in _workspace_members(project_root, workspace):
        if member_dir.resolve() == project_root.resolve():
            continue
        member_data = _read_cargo_toml(member_dir / reader.manifest_filename)
        units.extend(reader.read(member_dir, member_data, workspace_package))

    return units
