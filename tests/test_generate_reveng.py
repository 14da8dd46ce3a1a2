import contextlib
import io
import tempfile
import unittest
from pathlib import Path

from generate_reveng import build_entries, generate, load_config, main, parse_args, read_dump
from reveng_platform import ORACLE


REPO_ROOT = Path(__file__).resolve().parents[1]
EXAMPLE_CONFIG = REPO_ROOT / "reveng.example.yaml"

SAMPLE_DUMP = """\
CREATE SEQUENCE "S1"."SEQ_A" MINVALUE 1 INCREMENT BY 1
~
CREATE TABLE "S1"."T1" ("ID" NUMBER, "T2_ID" NUMBER)
  TABLESPACE "USERS"
~
ALTER TABLE "S1"."T1" ADD CONSTRAINT "PK_T1" PRIMARY KEY ("ID") ENABLE
~
ALTER TABLE "S1"."T1" ADD CONSTRAINT "FK_T1_T2" FOREIGN KEY ("T2_ID") REFERENCES "S1"."T2" ("ID") ENABLE
~
COMMENT ON COLUMN "S1"."T1"."ID" IS 'primary key'
~
CREATE UNIQUE INDEX "S1"."IX_T1" ON "S1"."T1" ("T2_ID")
~
CREATE TABLE "S1"."ARTIFACTDEPLOYMENT" ("ID" NUMBER)
~
"""

EXPECTED_T1 = (
    "//// CHANGE name=init\n"
    "CREATE TABLE S1.T1 (ID NUMBER, T2_ID NUMBER)\n"
    "\n"
    "//// CHANGE name=PK_T1\n"
    "ALTER TABLE S1.T1 ADD CONSTRAINT PK_T1 PRIMARY KEY (ID) ENABLE\n"
    "\n"
    "//// CHANGE FK name=FK_T1_T2\n"
    "ALTER TABLE S1.T1 ADD CONSTRAINT FK_T1_T2 FOREIGN KEY (T2_ID) REFERENCES S1.T2 (ID) ENABLE\n"
    "\n"
    "//// CHANGE name=comment\n"
    "COMMENT ON COLUMN S1.T1.ID IS 'primary key'\n"
)


class TestGenerateReveng(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.dump = self.root / "interim" / "output.sql"
        self.dump.parent.mkdir(parents=True)
        self.dump.write_text(SAMPLE_DUMP, encoding="utf-8")
        self.out = self.root / "reveng"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _run(self, *extra: str) -> str:
        argv = ["--input", str(self.dump), "--schema", "s1", "--output-dir", str(self.out), *extra]
        stdout = io.StringIO()
        with contextlib.redirect_stdout(stdout):
            self.assertEqual(main(argv), 0)
        return stdout.getvalue()

    def test_writes_one_file_per_object(self) -> None:
        output = self._run()

        self.assertIn("Classified 7 statements", output)
        self.assertEqual((self.out / "S1" / "table" / "T1.sql").read_text(encoding="utf-8"), EXPECTED_T1)
        self.assertEqual(
            (self.out / "S1" / "index" / "IX_T1.sql").read_text(encoding="utf-8"),
            "CREATE UNIQUE INDEX S1.IX_T1 ON S1.T1 (T2_ID)\n",
        )
        self.assertEqual(
            (self.out / "S1" / "sequence" / "SEQ_A.sql").read_text(encoding="utf-8"),
            "CREATE SEQUENCE S1.SEQ_A MINVALUE 1 INCREMENT BY 1\n",
        )
        self.assertFalse((self.out / "S1" / "table" / "ARTIFACTDEPLOYMENT.sql").exists())
        self.assertFalse((self.out / "S1" / "table" / "T1.baseline.sql").exists())

        manifest = (self.out / "system-config.xml").read_text(encoding="utf-8")
        self.assertIn('<dbSystemConfig type="ORACLE">', manifest)
        self.assertIn('<schema name="S1" />', manifest)
        self.assertIn(f"Generated {self.out / 'system-config.xml'}", output)

    def test_generate_baseline(self) -> None:
        self._run("--generate-baseline")
        baseline = (self.out / "S1" / "table" / "T1.baseline.sql").read_text(encoding="utf-8")
        self.assertEqual(
            baseline,
            "CREATE TABLE S1.T1 (ID NUMBER, T2_ID NUMBER)\n\n"
            "ALTER TABLE S1.T1 ADD CONSTRAINT PK_T1 PRIMARY KEY (ID) ENABLE\n\n"
            "ALTER TABLE S1.T1 ADD CONSTRAINT FK_T1_T2 FOREIGN KEY (T2_ID) REFERENCES S1.T2 (ID) ENABLE\n\n"
            "COMMENT ON COLUMN S1.T1.ID IS 'primary key'\n",
        )
        self.assertFalse((self.out / "S1" / "index" / "IX_T1.baseline.sql").exists())

    def test_default_run_keeps_edited_files(self) -> None:
        self._run()
        t1 = self.out / "S1" / "table" / "T1.sql"
        t1.write_text("edited\n", encoding="utf-8")

        self._run()
        self.assertEqual(t1.read_text(encoding="utf-8"), "edited\n")

    def test_overwrite_listed_tables(self) -> None:
        self._run()
        t1 = self.out / "S1" / "table" / "T1.sql"
        seq = self.out / "S1" / "sequence" / "SEQ_A.sql"
        t1.write_text("edited\n", encoding="utf-8")
        seq.write_text("edited\n", encoding="utf-8")

        self._run("--overwrite", "tables", "--overwrite-tables", "t1")
        self.assertEqual(t1.read_text(encoding="utf-8"), EXPECTED_T1)
        self.assertEqual(seq.read_text(encoding="utf-8"), "edited\n")

    def test_include_objects(self) -> None:
        self._run("--include-objects", "TABLE~T1")
        self.assertTrue((self.out / "S1" / "table" / "T1.sql").exists())
        self.assertFalse((self.out / "S1" / "sequence").exists())
        self.assertFalse((self.out / "S1" / "index").exists())

    def test_example_config(self) -> None:
        config = load_config(EXAMPLE_CONFIG)
        self.assertEqual(config["platform"], "ORACLE")
        self.assertEqual(config["exclude_objects"]["TABLE"], ["TMP_%"])

        self.dump.write_text(
            SAMPLE_DUMP + 'CREATE TABLE "S1"."TMP_LOAD" ("ID" NUMBER)\n~\n',
            encoding="utf-8",
        )
        args = parse_args(["--input", str(self.dump), "--schema", "S1", "--output-dir", str(self.out)])
        with contextlib.redirect_stdout(io.StringIO()):
            generate(args, config)

        self.assertTrue((self.out / "S1" / "table" / "T1.sql").exists())
        self.assertFalse((self.out / "S1" / "table" / "TMP_LOAD.sql").exists())
        manifest = (self.out / "system-config.xml").read_text(encoding="utf-8")
        self.assertIn('jdbcUrl="jdbc:oracle:thin:@//db.example.com:1521/APPDB"', manifest)
        self.assertIn('dbPort="1521"', manifest)
        self.assertIn('dbServer="APPDB"', manifest)

    def test_empty_config_sections(self) -> None:
        config_path = self.root / "reveng.yaml"
        config_path.write_text("schema: S1\noverwrite:\nconnection:\nexclude_objects:\n", encoding="utf-8")
        config = load_config(config_path)

        args = parse_args(["--input", str(self.dump), "--output-dir", str(self.out)])
        with contextlib.redirect_stdout(io.StringIO()):
            generate(args, config)

        self.assertEqual((self.out / "S1" / "table" / "T1.sql").read_text(encoding="utf-8"), EXPECTED_T1)
        manifest = (self.out / "system-config.xml").read_text(encoding="utf-8")
        self.assertIn('<dbEnvironment name="dev1" />', manifest)

    def test_missing_schema_is_rejected(self) -> None:
        args = parse_args(["--input", str(self.dump), "--output-dir", str(self.out)])
        with self.assertRaises(ValueError):
            generate(args, {})

    def test_unknown_platform_is_rejected(self) -> None:
        args = parse_args(["--input", str(self.dump), "--schema", "S1", "--platform", "DB9"])
        with self.assertRaises(ValueError):
            generate(args, {})


class TestInputs(unittest.TestCase):
    def test_load_config(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            empty = Path(td) / "empty.yaml"
            empty.write_text("", encoding="utf-8")
            listing = Path(td) / "list.yaml"
            listing.write_text("- a\n- b\n", encoding="utf-8")

            self.assertEqual(load_config(None), {})
            self.assertEqual(load_config(empty), {})
            with self.assertRaises(ValueError):
                load_config(listing)

    def test_read_dump_directory(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            (root / "b.sql").write_text("CREATE OR REPLACE VIEW V1 AS SELECT 1 FROM DUAL\n~\n", encoding="utf-8")
            (root / "a.sql").write_text("CREATE TABLE T1 (ID NUMBER)", encoding="utf-8")
            (root / "notes.txt").write_text("ignored", encoding="utf-8")

            text = read_dump(root, ORACLE.delimiter)
            entries = build_entries(text, ORACLE, "S1")

        self.assertEqual([e.destination.object_type for e in entries], ["TABLE", "VIEW"])
        self.assertEqual({e.destination.schema for e in entries}, {"S1"})


if __name__ == "__main__":
    unittest.main()
