#!/usr/bin/env python3
"""Generate per-object change scripts + system-config.xml from an interim DDL dump."""

from __future__ import annotations

import argparse
from pathlib import Path

try:
    import yaml
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required. Install with: pip install pyyaml") from exc

from ddl_classifier import ChangeEntry
from reveng_platform import RevengPlatform, get_platform
from reveng_writer import (
    EXCLUDE,
    INCLUDE,
    ConnectionInfo,
    ObjectFilter,
    exclusion_predicate,
    overwrite_policy,
    parse_object_filter,
    write_reveng,
)


def load_config(path: Path | None) -> dict:
    if path is None:
        return {}
    config = yaml.safe_load(path.read_text(encoding="utf-8"))
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValueError(f"Expected a mapping at the top of {path}")
    return config


def read_dump(path: Path, delimiter: str, encoding: str = "utf-8") -> str:
    if path.is_dir():
        # Files need not end with a delimiter line.
        return f"\n{delimiter}\n".join(p.read_text(encoding=encoding) for p in sorted(path.glob("*.sql")))
    return path.read_text(encoding=encoding)


def build_entries(text: str, platform: RevengPlatform, schema: str) -> list[ChangeEntry]:
    classifier = platform.classifier(schema)
    return classifier.classify_all(platform.statements(text))


def object_filter(cli_value: str | None, config_value, mode: str) -> ObjectFilter | None:
    if cli_value:
        return parse_object_filter(cli_value, mode)
    if isinstance(config_value, str):
        return parse_object_filter(config_value, mode)
    if config_value:
        return ObjectFilter.from_mapping(config_value, mode)
    return None


def generate(args: argparse.Namespace, config: dict) -> list[Path]:
    platform = get_platform(args.platform or config.get("platform", "ORACLE"))
    schema = args.schema or config.get("schema")
    if not schema:
        raise ValueError("A schema is required (--schema or 'schema' in the config)")
    schema = platform.convert_name(schema)

    output_dir = Path(args.output_dir or config.get("output_dir", "reveng-output"))
    generate_baseline = args.generate_baseline or bool(config.get("generate_baseline", False))

    overwrite_cfg = config.get("overwrite") or {}
    overwrite_tables = args.overwrite_tables.split(",") if args.overwrite_tables else (overwrite_cfg.get("tables") or [])
    should_overwrite = overwrite_policy(args.overwrite or overwrite_cfg.get("policy"), overwrite_tables)

    keep = exclusion_predicate(
        platform,
        excludes=object_filter(args.exclude_objects, config.get("exclude_objects"), EXCLUDE),
        includes=object_filter(args.include_objects, config.get("include_objects"), INCLUDE),
    )

    connection_cfg = config.get("connection") or {}
    db_port = args.db_port or connection_cfg.get("port")
    connection = ConnectionInfo(
        jdbc_url=args.jdbc_url or connection_cfg.get("jdbc_url"),
        db_host=args.db_host or connection_cfg.get("host"),
        db_port=int(db_port) if db_port else None,
        db_server=args.db_server or connection_cfg.get("server"),
    )

    text = read_dump(Path(args.input), platform.delimiter, config.get("encoding", "utf-8"))
    entries = build_entries(text, platform, schema)
    print(f"Classified {len(entries)} statements")
    return write_reveng(
        entries,
        output_dir,
        platform,
        generate_baseline=generate_baseline,
        should_overwrite=should_overwrite,
        keep=keep,
        connection=connection,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reverse-engineer an interim DDL dump into per-object change scripts")
    parser.add_argument("--input", default="interim/output.sql", help="Interim dump file or directory of *.sql dumps")
    parser.add_argument("--config", default=None, help="Optional YAML config")
    parser.add_argument("--platform", default=None, help="Database platform (default: ORACLE)")
    parser.add_argument("--schema", default=None, help="Schema used for unqualified object names")
    parser.add_argument("--output-dir", default=None, help="Output directory (default: reveng-output)")
    parser.add_argument("--generate-baseline", action="store_true", help="Also write *.baseline.sql files for tables")
    parser.add_argument("--overwrite", choices=["default", "always", "tables"], default=None, help="Overwrite policy")
    parser.add_argument("--overwrite-tables", default=None, help="Comma-separated object names for --overwrite tables")
    parser.add_argument("--exclude-objects", default=None, help="Objects to skip, e.g. TABLE~A,B;VIEW~V%%")
    parser.add_argument("--include-objects", default=None, help="Only keep these objects, same format")
    parser.add_argument("--jdbc-url", default=None, help="Connection URL recorded in system-config.xml")
    parser.add_argument("--db-host", default=None, help="Database host recorded in system-config.xml")
    parser.add_argument("--db-port", type=int, default=None, help="Database port recorded in system-config.xml")
    parser.add_argument("--db-server", default=None, help="Logical server name recorded in system-config.xml")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    config = load_config(Path(args.config) if args.config else None)

    written = generate(args, config)
    for path in written:
        print(f"Generated {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
