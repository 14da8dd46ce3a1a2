"""Group classified entries per destination and write one script per schema object."""

from __future__ import annotations

import dataclasses
import fnmatch
from collections import defaultdict
from pathlib import Path
from typing import Callable, Iterable, Mapping

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from ddl_classifier import QUOTE_CHARS, ChangeEntry, Destination
from reveng_platform import RevengPlatform


TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
MANIFEST_TEMPLATE = "system-config.xml.j2"
MANIFEST_FILE = "system-config.xml"

METADATA_PREFIX = "//// METADATA"
CHANGE_PREFIX = "//// CHANGE"

INCLUDE = "include"
EXCLUDE = "exclude"

OverwritePredicate = Callable[[Path, Destination], bool]
DestinationPredicate = Callable[[Destination], bool]


@dataclasses.dataclass
class ObjectFilter:
    """Case-insensitive object type + name rules; names accept % and * wildcards."""

    mode: str
    rules: dict[str, list[str]] = dataclasses.field(default_factory=dict)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Iterable[str]] | None, mode: str = EXCLUDE) -> ObjectFilter:
        rules: dict[str, list[str]] = defaultdict(list)
        for object_type, names in (mapping or {}).items():
            if isinstance(names, str):
                names = [names]
            rules[object_type.strip().upper()].extend(n.strip().lower() for n in names if n.strip())
        return cls(mode=mode, rules=dict(rules))

    def matches(self, destination: Destination) -> bool:
        patterns = self.rules.get(destination.object_type.upper(), [])
        name = destination.object_name.lower()
        return any(fnmatch.fnmatchcase(name, p.replace("%", "*")) for p in patterns)

    def accepts(self, destination: Destination) -> bool:
        if not self.rules:
            return True
        if self.mode == INCLUDE:
            return self.matches(destination)
        return not self.matches(destination)


def parse_object_filter(text: str | None, mode: str = EXCLUDE) -> ObjectFilter:
    """Parse `TABLE~A,B;VIEW~V%` into an ObjectFilter."""
    mapping: dict[str, list[str]] = defaultdict(list)
    for clause in (text or "").split(";"):
        clause = clause.strip()
        if not clause:
            continue
        if "~" not in clause:
            raise ValueError(f"Invalid object filter clause {clause!r}; expected TYPE~name1,name2")
        object_type, names = clause.split("~", 1)
        mapping[object_type].extend(names.split(","))
    return ObjectFilter.from_mapping(mapping, mode)


def exclusion_predicate(
    platform: RevengPlatform,
    excludes: ObjectFilter | None = None,
    includes: ObjectFilter | None = None,
) -> DestinationPredicate:
    """Return a predicate that is true for destinations to keep."""
    filters = [ObjectFilter.from_mapping({"TABLE": platform.core_table_names()}, EXCLUDE)]
    if excludes:
        filters.append(excludes)
    if includes:
        filters.append(includes)
    return lambda destination: all(f.accepts(destination) for f in filters)


def overwrite_if_missing() -> OverwritePredicate:
    return lambda path, destination: not path.exists()


def overwrite_all() -> OverwritePredicate:
    return lambda path, destination: True


def overwrite_tables(table_names: Iterable[str]) -> OverwritePredicate:
    allowed = {name.lower() for name in table_names}
    return lambda path, destination: not path.exists() or destination.object_name.lower() in allowed


def overwrite_policy(selector: str | None, tables: Iterable[str] = ()) -> OverwritePredicate:
    selector = (selector or "default").lower()
    if selector == "default":
        return overwrite_if_missing()
    if selector == "always":
        return overwrite_all()
    if selector == "tables":
        return overwrite_tables(tables)
    raise ValueError(f"Unknown overwrite policy {selector!r}; expected default, always or tables")


def group_entries(
    entries: Iterable[ChangeEntry],
    keep: DestinationPredicate | None = None,
) -> dict[Destination, list[ChangeEntry]]:
    groups: dict[Destination, list[ChangeEntry]] = {}
    for entry in entries:
        if keep is not None and not keep(entry.destination):
            continue
        groups.setdefault(entry.destination, []).append(entry)
    return groups


def sort_entries(entries: Iterable[ChangeEntry]) -> list[ChangeEntry]:
    return sorted(entries, key=lambda e: (e.order, e.name or ""))


def metadata_line(entries: Iterable[ChangeEntry]) -> str:
    annotations: list[str] = []
    for entry in entries:
        for annotation in entry.metadata_annotations:
            if annotation not in annotations:
                annotations.append(annotation)
    if not annotations:
        return ""
    return f"{METADATA_PREFIX} " + " ".join(annotations)


def change_header(entry: ChangeEntry) -> str:
    annotation = f" {entry.change_annotation}" if entry.change_annotation else ""
    return f"{CHANGE_PREFIX}{annotation} name={entry.name or ''}"


def render_flat(entries: list[ChangeEntry]) -> str:
    entries = sort_entries(entries)
    parts: list[str] = []
    metadata = metadata_line(entries)
    if metadata:
        parts.append(metadata)
    parts.append("\n\n".join(e.sql.strip() for e in entries))
    return "\n".join(parts) + "\n"


def render_history(entries: list[ChangeEntry]) -> str:
    entries = sort_entries(entries)
    lines: list[str] = []
    metadata = metadata_line(entries)
    if metadata:
        lines.append(metadata)

    prev_name: str | None = None
    for idx, entry in enumerate(entries):
        if idx == 0 or entry.name != prev_name:
            lines.append(change_header(entry))
        lines.append(entry.sql.strip())
        lines.append("")
        prev_name = entry.name

    return "\n".join(lines)


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8", newline="\n")


def write_destinations(
    groups: Mapping[Destination, list[ChangeEntry]],
    output_dir: Path,
    generate_baseline: bool = False,
    should_overwrite: OverwritePredicate | None = None,
) -> list[Path]:
    should_overwrite = should_overwrite or overwrite_if_missing()
    written: list[Path] = []

    for dest, entries in groups.items():
        main_path = dest.main_path(output_dir)
        if should_overwrite(main_path, dest):
            content = render_history(entries) if dest.baseline_eligible else render_flat(entries)
            write_text(main_path, content)
            written.append(main_path)

        if generate_baseline and dest.baseline_eligible:
            baseline_path = dest.baseline_path(output_dir)
            write_text(baseline_path, render_flat(entries))
            written.append(baseline_path)

    return written


@dataclasses.dataclass
class ConnectionInfo:
    jdbc_url: str | None = None
    db_host: str | None = None
    db_port: int | None = None
    db_server: str | None = None


def collect_schemas(destinations: Iterable[Destination]) -> list[str]:
    """Distinct schemas, compared the way Destination identity compares them; first spelling wins."""
    schemas: dict[str, str] = {}
    for destination in destinations:
        key = destination.identity[0]
        if key:
            schemas.setdefault(key, destination.schema.strip(QUOTE_CHARS))
    return sorted(schemas.values())


def render_manifest(
    platform_name: str,
    schemas: Iterable[str],
    connection: ConnectionInfo | None = None,
    template_dir: Path = TEMPLATE_DIR,
) -> str:
    connection = connection or ConnectionInfo()
    env = Environment(
        loader=FileSystemLoader(str(template_dir)),
        undefined=StrictUndefined,
        autoescape=True,
        keep_trailing_newline=True,
    )
    template = env.get_template(MANIFEST_TEMPLATE)
    return template.render(
        platform=platform_name,
        schemas=list(schemas),
        jdbc_url=connection.jdbc_url,
        db_host=connection.db_host,
        db_port=str(connection.db_port) if connection.db_port is not None else None,
        db_server=connection.db_server,
    )


def write_manifest(
    output_dir: Path,
    platform_name: str,
    schemas: Iterable[str],
    connection: ConnectionInfo | None = None,
    template_dir: Path = TEMPLATE_DIR,
) -> Path:
    path = output_dir / MANIFEST_FILE
    write_text(path, render_manifest(platform_name, schemas, connection, template_dir))
    return path


def write_reveng(
    entries: Iterable[ChangeEntry],
    output_dir: Path,
    platform: RevengPlatform,
    generate_baseline: bool = False,
    should_overwrite: OverwritePredicate | None = None,
    keep: DestinationPredicate | None = None,
    connection: ConnectionInfo | None = None,
) -> list[Path]:
    """Write every surviving destination, then the manifest; returns the written paths."""
    output_dir.mkdir(parents=True, exist_ok=True)
    keep = keep or exclusion_predicate(platform)

    groups = group_entries(entries, keep)
    written = write_destinations(groups, output_dir, generate_baseline, should_overwrite)
    written.append(write_manifest(output_dir, platform.name, collect_schemas(groups), connection))
    return written
