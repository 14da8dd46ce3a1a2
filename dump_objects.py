#!/usr/bin/env python3
"""Dump Oracle object DDL into an interim file for reverse-engineering.

Connects with python-oracledb and runs DBMS_METADATA.GET_DDL for every object in a
schema, plus the dependent COMMENT DDL. Statements are written to
{interim_dir}/output.sql separated by lines holding only "~".

Usage:
    python dump_objects.py --host HOST --service SERVICE --user USER --schema SCHEMA
"""

from __future__ import annotations

import argparse
import contextlib
import os
import re
import sys
import traceback
from pathlib import Path
from typing import Any, Iterator

import oracledb

from ddl_patterns import UNCLASSIFIED_MARKER


DELIMITER = "~"
INTERIM_FILE = "output.sql"
ROW_KEYS = ("SORT_ORDER1", "OBJECT_NAME", "SORT_ORDER2", "OBJECT_TYPE", "OBJECT_DDL")


@contextlib.contextmanager
def connect(host: str, port: int, service: str, user: str, password: str) -> Iterator[Any]:
    dsn = oracledb.makedsn(host, port, service_name=service)
    conn = oracledb.connect(user=user, password=password, dsn=dsn)
    try:
        yield conn
    finally:
        conn.close()


def execute(conn: Any, sql: str) -> None:
    with conn.cursor() as cursor:
        cursor.execute(sql)


def query_rows(conn: Any, sql: str) -> list[dict[str, Any]]:
    with conn.cursor() as cursor:
        cursor.execute(sql)
        columns = [col[0] for col in cursor.description]
        return [dict(zip(columns, row)) for row in cursor.fetchall()]


def set_transform_params(conn: Any) -> None:
    execute(conn, "begin DBMS_METADATA.SET_TRANSFORM_PARAM(DBMS_METADATA.SESSION_TRANSFORM,'STORAGE',false); end;")
    execute(conn, "begin DBMS_METADATA.SET_TRANSFORM_PARAM(DBMS_METADATA.SESSION_TRANSFORM,'SQLTERMINATOR',true); end;")


def reset_transform_params(conn: Any) -> None:
    execute(conn, "begin DBMS_METADATA.SET_TRANSFORM_PARAM(DBMS_METADATA.SESSION_TRANSFORM,'DEFAULT',true); end;")


def object_query(schema: str, with_definitions: bool, object_name: str | None = None) -> str:
    # PACKAGE BODY and TYPE BODY come along with their spec; GET_DDL cannot render DATABASE LINK.
    ddl_expr = (
        "dbms_metadata.get_ddl(REPLACE(obj.OBJECT_TYPE,' ','_'), obj.OBJECT_NAME, obj.owner) || ';'"
        if with_definitions
        else "'blank'"
    )
    object_clause = f" AND obj.OBJECT_NAME = '{object_name}'" if object_name else ""
    return f"""
WITH MY_CONSTRAINT_INDICES AS (
    SELECT DISTINCT INDEX_OWNER, INDEX_NAME
    FROM DBA_CONSTRAINTS
    WHERE OWNER = '{schema}' AND INDEX_OWNER IS NOT NULL AND INDEX_NAME IS NOT NULL
    AND CONSTRAINT_NAME NOT LIKE 'BIN$%'
)
SELECT CASE WHEN obj.OBJECT_TYPE = 'INDEX' THEN 2 ELSE 1 END SORT_ORDER1
    , obj.OBJECT_NAME
    , 1 AS SORT_ORDER2
    , obj.OBJECT_TYPE
    , {ddl_expr} AS OBJECT_DDL
FROM DBA_OBJECTS obj
LEFT JOIN DBA_TABLES tab ON obj.OBJECT_TYPE = 'TABLE' AND obj.OWNER = tab.OWNER AND obj.OBJECT_NAME = tab.TABLE_NAME
LEFT JOIN MY_CONSTRAINT_INDICES conind ON obj.OBJECT_TYPE = 'INDEX' AND obj.OWNER = conind.INDEX_OWNER AND obj.OBJECT_NAME = conind.INDEX_NAME
WHERE obj.OWNER = '{schema}'
    AND obj.GENERATED = 'N'
    AND obj.OBJECT_TYPE NOT IN ('PACKAGE BODY', 'TYPE BODY', 'LOB', 'TABLE PARTITION', 'DATABASE LINK')
    AND obj.OBJECT_NAME NOT LIKE 'MLOG$%' AND obj.OBJECT_NAME NOT LIKE 'RUPD$%'
    AND obj.OBJECT_NAME NOT LIKE 'SYS_%'
    AND conind.INDEX_OWNER IS NULL
    AND (tab.NESTED IS NULL OR tab.NESTED = 'NO')
    {object_clause}
"""


def comment_query(schema: str) -> str:
    # Comments sort with their table (SORT_ORDER1 = 1) and after its definition (SORT_ORDER2 = 2).
    return f"""
SELECT 1 SORT_ORDER1
    , obj.OBJECT_NAME
    , 2 AS SORT_ORDER2
    , 'COMMENT' AS OBJECT_TYPE
    , dbms_metadata.get_dependent_ddl('COMMENT', obj.OBJECT_NAME, obj.OWNER) || ';' AS OBJECT_DDL
FROM (
    SELECT DISTINCT obj.OWNER, obj.OBJECT_NAME, obj.OBJECT_TYPE
    FROM DBA_OBJECTS obj
    LEFT JOIN DBA_TAB_COMMENTS tabcom ON obj.OWNER = tabcom.OWNER AND obj.OBJECT_NAME = tabcom.TABLE_NAME AND tabcom.COMMENTS IS NOT NULL
    LEFT JOIN DBA_COL_COMMENTS colcom ON obj.OWNER = colcom.OWNER AND obj.OBJECT_NAME = colcom.TABLE_NAME AND colcom.COMMENTS IS NOT NULL
    WHERE obj.OWNER = '{schema}'
    AND (tabcom.OWNER IS NOT NULL OR colcom.OWNER IS NOT NULL)
) obj
ORDER BY 1, 2
"""


def placeholder_row(row: dict[str, Any], exc: BaseException) -> dict[str, Any]:
    trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    text = (
        f"{UNCLASSIFIED_MARKER} {row['OBJECT_NAME']} of type {row['OBJECT_TYPE']}\n"
        "/*\n"
        "The definition of this object could not be extracted; resolve it by hand.\n"
        f"{trace}"
        "*/\n"
        "end\n"
    )
    return {
        "SORT_ORDER1": row["SORT_ORDER1"],
        "OBJECT_NAME": row["OBJECT_NAME"],
        "SORT_ORDER2": row["SORT_ORDER2"],
        "OBJECT_TYPE": row["OBJECT_TYPE"],
        "OBJECT_DDL": text,
    }


def dedupe_rows(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    seen: set[tuple] = set()
    out: list[dict[str, Any]] = []
    for row in rows:
        key = tuple(row.get(k) for k in ROW_KEYS)
        if key in seen:
            continue
        seen.add(key)
        out.append(row)
    return out


def query_objects(conn: Any, schema: str) -> list[dict[str, Any]]:
    try:
        return query_rows(conn, object_query(schema, True))
    except oracledb.Error as e:
        # One unrenderable object fails the whole bulk query.
        print(f"[extract] bulk query failed ({e}); falling back to per-object queries", file=sys.stderr)

    rows: list[dict[str, Any]] = []
    for obj in query_rows(conn, object_query(schema, False)):
        try:
            rows.extend(query_rows(conn, object_query(schema, True, obj["OBJECT_NAME"])))
        except oracledb.Error as e:
            print(f"[extract] failed to extract {obj['OBJECT_TYPE']} {obj['OBJECT_NAME']}: {e}", file=sys.stderr)
            rows.append(placeholder_row(obj, e))
    return dedupe_rows(rows)


def query_comments(conn: Any, schema: str) -> list[dict[str, Any]]:
    return query_rows(conn, comment_query(schema))


def sort_rows(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(rows, key=lambda r: (r["SORT_ORDER1"], r["OBJECT_NAME"], r["SORT_ORDER2"]))


def lob_to_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if hasattr(value, "read"):
        text = value.read()
        if isinstance(text, str):
            return text
    raise TypeError(f"Unexpected type {type(value).__name__}; expecting str or LOB")


def clean_ddl(object_type: str, text: str) -> str:
    text = text.rstrip()
    text = re.sub(r";+\s*$", "", text)
    text = re.sub(r"/+\s*$", "", text)
    if "PACKAGE" in object_type or object_type == "TYPE":
        text = re.sub(r"^/$", "", text, flags=re.M)
    return text.rstrip()


def split_comment_ddl(text: str) -> list[str]:
    return [part.strip("\n") for part in re.split(r";$", text, flags=re.M) if part.strip()]


def render_interim(rows: list[dict[str, Any]]) -> str:
    lines: list[str] = []
    for row in rows:
        object_type = str(row["OBJECT_TYPE"])
        ddl = clean_ddl(object_type, lob_to_string(row["OBJECT_DDL"]))
        sqls = split_comment_ddl(ddl) if object_type == "COMMENT" else [ddl]
        for sql in sqls:
            lines.append(sql)
            lines.append(DELIMITER)
    return "\n".join(lines) + "\n" if lines else ""


def write_interim(rows: list[dict[str, Any]], path: Path, encoding: str = "utf-8") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_interim(rows), encoding=encoding, newline="\n")


def dump_schema(conn: Any, schema: str) -> list[dict[str, Any]]:
    set_transform_params(conn)
    try:
        return sort_rows(dedupe_rows(query_objects(conn, schema) + query_comments(conn, schema)))
    finally:
        reset_transform_params(conn)


def main():
    parser = argparse.ArgumentParser(description="Dump Oracle object DDL for reverse-engineering")
    parser.add_argument("--host", default="localhost", help="Oracle host (default: localhost)")
    parser.add_argument("--port", type=int, default=1521, help="Oracle listener port (default: 1521)")
    parser.add_argument("--service", required=True, help="Oracle service name")
    parser.add_argument("--user", required=True, help="Database user")
    parser.add_argument(
        "--password",
        default=os.environ.get("REVENG_DB_PASSWORD", ""),
        help="Database password (default: $REVENG_DB_PASSWORD)",
    )
    parser.add_argument("--schema", required=True, help="Schema (owner) to dump")
    parser.add_argument("--interim-dir", default="interim", help="Directory for the interim dump")
    parser.add_argument("--charset", default="utf-8", help="Encoding of the interim dump (default: utf-8)")
    args = parser.parse_args()

    schema = args.schema.upper()
    out_path = Path(args.interim_dir) / INTERIM_FILE

    with connect(args.host, args.port, args.service, args.user, args.password) as conn:
        rows = dump_schema(conn, schema)

    write_interim(rows, out_path, args.charset)
    print(f"  {schema}: {len(rows)} objects dumped")
    print(f"\nInterim dump written to {out_path}")


if __name__ == "__main__":
    main()
