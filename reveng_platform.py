"""Platform definitions: dump delimiter, noise filters and the ordered classification rules."""

from __future__ import annotations

import dataclasses
from typing import Callable, Pattern

from ddl_classifier import Classifier, StatementPredicate, StatementSource, contains, starts_with
from ddl_patterns import (
    MatchRule,
    NameArity,
    object_pattern,
    remove_quotes,
    remove_storage,
    remove_tablespace,
    schema_object_pattern,
    split_package_body,
    unclassified_marker_pattern,
)


CORE_TABLES = ("ARTIFACTDEPLOYMENT", "ARTIFACTEXECUTION", "ARTIFACTEXECUTIONATTR", "SCHEMACHECKSUM")


@dataclasses.dataclass(frozen=True)
class RevengPlatform:
    name: str
    delimiter: str
    start_quote: str
    end_quote: str
    noise: tuple[StatementPredicate, ...]
    rules: tuple[MatchRule, ...]
    baseline_types: frozenset[str] = frozenset({"TABLE"})
    core_tables: tuple[str, ...] = CORE_TABLES
    convert_name: Callable[[str], str] = str.upper

    @property
    def unclassified_pattern(self) -> Pattern[str]:
        return unclassified_marker_pattern(self.start_quote, self.end_quote)

    def statements(self, text: str) -> StatementSource:
        return StatementSource(text=text, delimiter=self.delimiter, excludes=self.noise)

    def classifier(self, schema: str) -> Classifier:
        return Classifier(
            rules=self.rules,
            schema=schema,
            start_quote=self.start_quote,
            end_quote=self.end_quote,
            unclassified_pattern=self.unclassified_pattern,
            baseline_types=self.baseline_types,
        )

    def core_table_names(self) -> list[str]:
        return [self.convert_name(name) for name in self.core_tables]


# Fixed orders for rules whose statements must land after everything else of the object.
FOREIGN_KEY_ORDER = 50
COMMENT_ORDER = 100


def oracle_rules(quote: str = '"') -> tuple[MatchRule, ...]:
    obj = schema_object_pattern(quote, quote)
    name = object_pattern(quote, quote)
    two = NameArity.TWO
    unquote = remove_quotes(quote, quote)

    return (
        MatchRule("SEQUENCE", two, rf"create\s+(?:or\s+replace\s+)?sequence\s+{obj}").with_post_processors(
            remove_tablespace, unquote
        ),
        MatchRule("TABLE", two, rf"create\s+(?:global\s+temporary\s+)?table\s+{obj}", change_name="init").with_post_processors(
            remove_tablespace, remove_storage, unquote
        ),
        MatchRule(
            "TABLE",
            two,
            rf"alter\s+table\s+{obj}\s+add\s+constraint\s+{name}\s+foreign\s+key",
            change_group=3,
            change_annotation="FK",
            order=FOREIGN_KEY_ORDER,
        ).with_post_processors(unquote),
        MatchRule(
            "TABLE",
            two,
            rf"alter\s+table\s+{obj}(?:\s+add\s+constraint\s+{name})?",
            change_group=3,
            change_name="alter",
        ).with_post_processors(remove_tablespace, remove_storage, unquote),
        # Column comments apply to tables and views alike; the type comes from the object seen earlier.
        MatchRule(None, two, rf"comment\s+on\s+\w+\s+{obj}", change_name="comment", order=COMMENT_ORDER).with_post_processors(
            unquote
        ),
        MatchRule(
            "TABLE",
            two,
            rf"create\s+(?:unique\s+|bitmap\s+)?index\s+{obj}\s+on\s+{obj}",
            schema_group=1,
            name_group=2,
            change_group=2,
            forced_type="INDEX",
        ).with_post_processors(remove_tablespace, remove_storage, unquote),
        MatchRule(
            "FUNCTION", two, rf"create\s+(?:or\s+replace\s+)?(?:force\s+)?(?:(?:non)?editionable\s+)?function\s+{obj}"
        ),
        MatchRule(
            "VIEW",
            two,
            rf"create\s+(?:or\s+replace\s+)?(?:no\s*force\s+|force\s+)?(?:(?:non)?editionable\s+)?(?:editioning\s+)?view\s+{obj}",
        ),
        MatchRule("SP", two, rf"create\s+(?:or\s+replace\s+)?(?:(?:non)?editionable\s+)?procedure\s+{obj}"),
        MatchRule("USERTYPE", two, rf"create\s+(?:or\s+replace\s+)?(?:(?:non)?editionable\s+)?type\s+(?!body\s){obj}"),
        MatchRule(
            "PACKAGE", two, rf"create\s+(?:or\s+replace\s+)?(?:(?:non)?editionable\s+)?package\s+(?!body\s){obj}"
        ).with_post_processors(split_package_body(quote, quote)),
        MatchRule("SYNONYM", two, rf"create\s+(?:or\s+replace\s+)?(?:(?:non)?editionable\s+)?(?:public\s+)?synonym\s+{obj}"),
        MatchRule("TRIGGER", two, rf"create\s+(?:or\s+replace\s+)?(?:(?:non)?editionable\s+)?trigger\s+{obj}"),
    )


ORACLE_NOISE = (
    contains("CLP file was created using DB2LOOK"),
    starts_with("CREATE SCHEMA"),
    starts_with("SET CURRENT SCHEMA"),
    starts_with("SET CURRENT PATH"),
    starts_with("COMMIT WORK"),
    starts_with("CONNECT RESET"),
    starts_with("TERMINATE"),
    starts_with("SET NLS_STRING_UNITS = 'SYSTEM'"),
)

ORACLE = RevengPlatform(
    name="ORACLE",
    delimiter="~",
    start_quote='"',
    end_quote='"',
    noise=ORACLE_NOISE,
    rules=oracle_rules('"'),
)

PLATFORMS: dict[str, RevengPlatform] = {ORACLE.name: ORACLE}


def get_platform(name: str) -> RevengPlatform:
    platform = PLATFORMS.get(name.strip().upper())
    if platform is None:
        raise ValueError(f"Unknown platform {name!r}; expected one of {sorted(PLATFORMS)}")
    return platform
