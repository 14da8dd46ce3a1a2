"""Regex building blocks, text post-processors and match rules for DDL classification."""

from __future__ import annotations

import dataclasses
import enum
import re
from typing import Callable, Pattern


IDENTIFIER = r"[\w$#]+"
NOT_IDENTIFIER = r"(?![\w$#])"

BODY_MARKER = "//// BODY"
UNCLASSIFIED_MARKER = "REVENG EXCEPTION"

PostProcessor = Callable[[str], str]


def _optional_quote(quote: str) -> str:
    return f"{re.escape(quote)}?" if quote else ""


def object_pattern(start_quote: str = '"', end_quote: str = '"') -> str:
    """One capture group: a bare or quoted name."""
    return f"{_optional_quote(start_quote)}({IDENTIFIER}){_optional_quote(end_quote)}{NOT_IDENTIFIER}"


def schema_object_pattern(start_quote: str = '"', end_quote: str = '"') -> str:
    """Two capture groups: optional schema, then name."""
    schema_part = f"(?:{_optional_quote(start_quote)}({IDENTIFIER}){_optional_quote(end_quote)}\\.)?"
    return schema_part + object_pattern(start_quote, end_quote)


def strip_quotes(name: str | None, start_quote: str = '"', end_quote: str = '"') -> str | None:
    if name is None:
        return None
    name = name.strip()
    if start_quote and name.startswith(start_quote):
        name = name[len(start_quote) :]
    if end_quote and name.endswith(end_quote):
        name = name[: -len(end_quote)]
    return name


def remove_quotes(start_quote: str = '"', end_quote: str = '"') -> PostProcessor:
    # String literals are matched first so quotes inside them survive.
    quoted = re.compile(f"('(?:[^']|'')*')|{re.escape(start_quote)}({IDENTIFIER}){re.escape(end_quote)}")

    def _unquote(match: re.Match[str]) -> str:
        return match.group(1) or match.group(2)

    def _remove_quotes(sql: str) -> str:
        return quoted.sub(_unquote, sql)

    return _remove_quotes


TABLESPACE_RE = re.compile(r'\s*(?<!")\bTABLESPACE\s+"?[\w$#]+"?', flags=re.I)
STORAGE_RE = re.compile(r'\s*(?<!")\bSTORAGE\s*\([^)]*\)', flags=re.I)


def remove_tablespace(sql: str) -> str:
    return TABLESPACE_RE.sub("", sql)


def remove_storage(sql: str) -> str:
    return STORAGE_RE.sub("", sql)


def split_package_body(start_quote: str = '"', end_quote: str = '"') -> PostProcessor:
    """Separate a package specification from the package body generated after it.

    Some platforms emit the spec and the body as one definition. The body header is
    located with its own pattern and a BODY marker line is placed in front of it,
    so downstream tooling can treat the two halves as separate statements.
    """
    body_re = re.compile(
        r"create\s+(?:or\s+replace\s+)?(?:(?:non)?editionable\s+)?package\s+body\s+"
        + schema_object_pattern(start_quote, end_quote),
        flags=re.I | re.S,
    )

    def _split_package_body(sql: str) -> str:
        match = body_re.search(sql)
        if not match or match.start() == 0:
            return sql
        head = sql[: match.start()].rstrip()
        return f"{head}\n{BODY_MARKER}\n{sql[match.start():]}"

    return _split_package_body


def unclassified_marker_pattern(start_quote: str = '"', end_quote: str = '"') -> Pattern[str]:
    marker = r"\s+".join(re.escape(word) for word in UNCLASSIFIED_MARKER.split())
    return re.compile(marker + r"\s+" + schema_object_pattern(start_quote, end_quote), flags=re.I)


class NameArity(enum.Enum):
    ONE = 1
    TWO = 2


@dataclasses.dataclass(frozen=True)
class MatchRule:
    object_type: str | None
    arity: NameArity
    pattern: str
    schema_group: int | None = None
    name_group: int | None = None
    change_group: int | None = None
    forced_type: str | None = None
    change_name: str | None = None
    change_annotation: str | None = None
    metadata_annotations: tuple[str, ...] = ()
    order: int | None = None
    dotall: bool = False
    post_processors: tuple[PostProcessor, ...] = ()
    regex: Pattern[str] = dataclasses.field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        flags = re.I | (re.S if self.dotall else 0)
        object.__setattr__(self, "regex", re.compile(self.pattern, flags))

    @property
    def target_type(self) -> str | None:
        return self.forced_type or self.object_type

    def name_groups(self) -> tuple[int | None, int]:
        """Return the (schema, name) capture group indexes."""
        if self.arity is NameArity.ONE:
            return self.schema_group, self.name_group or 1
        return self.schema_group or 1, self.name_group or 2

    def with_post_processors(self, *post_processors: PostProcessor) -> MatchRule:
        return dataclasses.replace(self, post_processors=self.post_processors + tuple(post_processors))

    def match(self, statement: str) -> re.Match[str] | None:
        return self.regex.match(statement.lstrip())

    def process(self, sql: str) -> str:
        for post_processor in self.post_processors:
            sql = post_processor(sql)
        return sql
