"""Split a raw DDL dump into statements and classify each one into a ChangeEntry."""

from __future__ import annotations

import dataclasses
import sys
from pathlib import Path
from typing import Callable, Iterable, Iterator, Pattern

from ddl_patterns import MatchRule, strip_quotes, unclassified_marker_pattern


UNCLASSIFIED = "UNCLASSIFIED"
UNKNOWN_PATH_PART = "unknown"
QUOTE_CHARS = "\"`[]"

StatementPredicate = Callable[[str], bool]


def contains(text: str) -> StatementPredicate:
    return lambda statement: text in statement


def starts_with(text: str) -> StatementPredicate:
    return lambda statement: statement.startswith(text)


@dataclasses.dataclass(frozen=True)
class StatementSource:
    """Statements of a dump, separated by lines holding only the delimiter.

    Iterating again re-splits the text from the start.
    """

    text: str
    delimiter: str
    excludes: tuple[StatementPredicate, ...] = ()

    def __iter__(self) -> Iterator[str]:
        buf: list[str] = []
        # Only "\n" ends a line; other separators splitlines() knows are statement content.
        for line in self.text.split("\n"):
            if line.rstrip() == self.delimiter:
                statement = self._finish(buf)
                buf = []
                if statement is not None:
                    yield statement
                continue
            buf.append(line)

        statement = self._finish(buf)
        if statement is not None:
            yield statement

    def _finish(self, buf: list[str]) -> str | None:
        statement = "\n".join(buf).rstrip()
        if not statement.strip():
            return None
        head = statement.lstrip()
        if any(exclude(head) for exclude in self.excludes):
            return None
        return statement


def _normalize(part: str | None) -> str:
    return (part or "").strip(QUOTE_CHARS)


@dataclasses.dataclass(frozen=True, eq=False)
class Destination:
    schema: str
    object_type: str
    object_name: str
    baseline_eligible: bool = False
    identity: tuple[str, str, str] = dataclasses.field(init=False, repr=False)

    def __post_init__(self) -> None:
        identity = (
            _normalize(self.schema).lower(),
            _normalize(self.object_type).upper(),
            _normalize(self.object_name).lower(),
        )
        object.__setattr__(self, "identity", identity)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Destination):
            return NotImplemented
        return self.identity == other.identity

    def __hash__(self) -> int:
        return hash(self.identity)

    def _directory(self, output_dir: Path) -> Path:
        schema = _normalize(self.schema) or UNKNOWN_PATH_PART
        return output_dir / schema / _normalize(self.object_type).lower()

    def main_path(self, output_dir: Path) -> Path:
        name = _normalize(self.object_name) or UNKNOWN_PATH_PART
        return self._directory(output_dir) / f"{name}.sql"

    def baseline_path(self, output_dir: Path) -> Path:
        name = _normalize(self.object_name) or UNKNOWN_PATH_PART
        return self._directory(output_dir) / f"{name}.baseline.sql"


@dataclasses.dataclass(frozen=True)
class ChangeEntry:
    destination: Destination
    sql: str
    order: int
    name: str | None = None
    change_annotation: str | None = None
    metadata_annotations: tuple[str, ...] = ()

    @property
    def is_baseline_eligible(self) -> bool:
        return self.destination.baseline_eligible


class Classifier:
    """First-match classification of statements against an ordered rule list.

    Rules whose object type is None take the type most recently classified for the
    same schema and name, which relies on the dump listing an object before the
    statements that refer back to it (e.g. column comments).
    """

    def __init__(
        self,
        rules: Iterable[MatchRule],
        schema: str,
        start_quote: str = '"',
        end_quote: str = '"',
        unclassified_pattern: Pattern[str] | None = None,
        baseline_types: Iterable[str] = ("TABLE",),
    ) -> None:
        self.rules = list(rules)
        self.schema = schema
        self.start_quote = start_quote
        self.end_quote = end_quote
        self.unclassified_pattern = unclassified_pattern or unclassified_marker_pattern(start_quote, end_quote)
        self.baseline_types = {t.upper() for t in baseline_types}
        self._types_by_name: dict[tuple[str, str], str] = {}

    def _strip(self, name: str | None) -> str | None:
        return strip_quotes(name, self.start_quote, self.end_quote)

    def _destination(self, schema: str, object_type: str, name: str) -> Destination:
        return Destination(
            schema=schema,
            object_type=object_type,
            object_name=name,
            baseline_eligible=object_type.upper() in self.baseline_types,
        )

    def classify(self, statement: str) -> ChangeEntry:
        for index, rule in enumerate(self.rules):
            match = rule.match(statement)
            if match:
                return self._entry_for_match(statement, index, rule, match)
        return self._unclassified(statement)

    def classify_all(self, statements: Iterable[str]) -> list[ChangeEntry]:
        return [self.classify(statement) for statement in statements]

    def _entry_for_match(self, statement: str, index: int, rule: MatchRule, match) -> ChangeEntry:
        schema_group, name_group = rule.name_groups()
        schema = self._strip(match.group(schema_group)) if schema_group else None
        schema = schema or self.schema
        name = self._strip(match.group(name_group)) or ""
        context_key = (schema.lower(), name.lower())

        object_type = rule.target_type
        if object_type is None:
            object_type = self._types_by_name.get(context_key)
        if object_type is None:
            print(f"[classify] no prior object for {schema}.{name}; leaving unclassified", file=sys.stderr)
            return ChangeEntry(
                destination=self._destination(schema, UNCLASSIFIED, name),
                sql=statement,
                order=len(self.rules),
            )
        self._types_by_name[context_key] = object_type

        change_name = rule.change_name
        if rule.change_group and match.group(rule.change_group):
            change_name = self._strip(match.group(rule.change_group))

        return ChangeEntry(
            destination=self._destination(schema, object_type, name),
            sql=rule.process(statement),
            order=rule.order if rule.order is not None else index,
            name=change_name,
            change_annotation=rule.change_annotation,
            metadata_annotations=rule.metadata_annotations,
        )

    def _unclassified(self, statement: str) -> ChangeEntry:
        schema = ""
        name = ""
        marker = self.unclassified_pattern.search(statement)
        if marker:
            schema = self._strip(marker.group(1)) or self.schema
            name = self._strip(marker.group(2)) or ""
        first_line = statement.strip().splitlines()[0] if statement.strip() else ""
        print(f"[classify] unclassified statement: {first_line[:80]}", file=sys.stderr)
        return ChangeEntry(
            destination=self._destination(schema, UNCLASSIFIED, name),
            sql=statement,
            order=len(self.rules),
        )
