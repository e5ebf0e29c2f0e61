"""
Tests for pgconverge.schema.reconciler module.

Statements go to a mocked connector; live state comes from FakeCatalog,
which reports tables the way PostgreSQL does after convergence.
"""

import pytest

from pgconverge.config import PgConvergeConfig
from pgconverge.database.connection import QueryResult
from pgconverge.database.introspection import ColumnInfo, IndexInfo
from pgconverge.definitions import FieldKind, FieldSpec, TableSpec
from pgconverge.exceptions import DatabaseConnectionError, StatementError
from pgconverge.identifiers import name_digest
from pgconverge.schema.operations import ChangeType, OperationMode
from pgconverge.schema.reconciler import (
    ReconciliationResult,
    ReconciliationStatus,
    SchemaReconciler,
)
from tests.conftest import executed_sql


def pages(fields=None, indexes=None, options=None) -> TableSpec:
    return TableSpec(name="Pages", fields=fields or {}, indexes=indexes or {}, options=options or {})


@pytest.fixture
def reconciler(mock_connector, fake_catalog):
    return SchemaReconciler(mock_connector, introspector=fake_catalog)


class TestReconciliationResult:

    def test_counts(self):
        result = ReconciliationResult(status=ReconciliationStatus.SUCCESS, schema="public", table="T")

        assert not result.has_changes
        assert result.successful_changes == 0
        assert result.failed_changes == 0
        assert result.statements == []


class TestCreateTable:
    """Tables missing from the catalog."""

    @pytest.mark.asyncio
    async def test_create_table(self, reconciler, mock_connector, articles_spec):
        result = await reconciler.require_table(articles_spec)

        sql = executed_sql(mock_connector)
        assert result.status == ReconciliationStatus.SUCCESS
        assert result.statements == sql
        assert len(sql) == 6

        create = sql[0]
        assert create.startswith('CREATE TABLE "public"."Articles" (\n    "ID" bigserial NOT NULL,')
        assert '"Title" varchar(200) DEFAULT \'\'' in create
        assert '"State" varchar(255) DEFAULT \'draft\' CONSTRAINT "Articles_State_check"' in create
        assert '"Tags" varchar(255)[]' in create
        assert '"ts_search" tsvector' in create
        assert create.endswith('PRIMARY KEY ("ID")\n)')

        assert [c.change_type for c in result.changes_applied] == [
            ChangeType.CREATE_TABLE,
            ChangeType.CREATE_INDEX,
            ChangeType.CREATE_INDEX,
            ChangeType.CREATE_INDEX,
            ChangeType.CREATE_TRIGGER,
            ChangeType.CREATE_INDEX,
        ]
        assert "tsvector_update_trigger" in sql[4]
        assert "USING GIN" in sql[5]

    @pytest.mark.asyncio
    async def test_create_partitioned_table(self, reconciler, mock_connector, partitioned_spec):
        result = await reconciler.require_table(partitioned_spec)

        sql = executed_sql(mock_connector)
        assert result.status == ReconciliationStatus.SUCCESS
        assert sql[0] == "CREATE TABLESPACE \"fast\" LOCATION '/mnt/fast'"
        assert sql[1].startswith('CREATE TABLE "public"."Events"')
        assert sql[1].endswith(') TABLESPACE "fast"')
        assert (
            'CREATE TABLE "public"."Events_old" (CHECK ("Year" < 2000)) '
            'INHERITS ("public"."Events") TABLESPACE "fast"'
        ) in sql
        assert (
            'ALTER TABLE "public"."Events_new" ADD CONSTRAINT "Events_new_pkey" PRIMARY KEY ("ID")'
        ) in sql
        assert any(s.startswith('CREATE OR REPLACE FUNCTION "public"."Events_insert_trigger"()') for s in sql)
        assert (
            'CREATE TRIGGER "trigger_Events_insert" BEFORE INSERT ON "public"."Events" '
            'FOR EACH ROW EXECUTE PROCEDURE "public"."Events_insert_trigger"()'
        ) in sql
        assert sql[-1] == (
            f'CLUSTER "public"."Events" USING "ix_{name_digest("Events", "year")}"'
        )
        assert len(sql) == 18

    @pytest.mark.asyncio
    async def test_dry_run_sends_nothing(self, mock_connector, fake_catalog, articles_spec):
        reconciler = SchemaReconciler(
            mock_connector, introspector=fake_catalog, operation_mode=OperationMode.DRY_RUN
        )

        result = await reconciler.require_table(articles_spec)

        mock_connector.query.assert_not_awaited()
        assert len(result.statements) == 6
        assert result.status == ReconciliationStatus.SUCCESS


class TestIdempotence:
    """A converged table produces no statements."""

    @pytest.mark.asyncio
    async def test_converged_table(self, reconciler, mock_connector, fake_catalog, articles_spec):
        fake_catalog.converge(articles_spec)

        result = await reconciler.require_table(articles_spec)

        assert executed_sql(mock_connector) == []
        assert result.status == ReconciliationStatus.SUCCESS
        assert not result.has_changes
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_converged_partitioned_table(self, reconciler, mock_connector, fake_catalog, partitioned_spec):
        fake_catalog.converge(partitioned_spec)

        result = await reconciler.require_table(partitioned_spec)

        assert executed_sql(mock_connector) == []
        assert result.status == ReconciliationStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_long_names(self, reconciler, mock_connector, fake_catalog):
        spec = TableSpec(
            name="Record" * 10,
            fields={"Text" * 10: {"kind": "enum", "values": ["a", "b"], "default": "a"}},
            indexes={"search" * 20: {"kind": "fulltext", "columns": ["Text" * 10]}},
        )
        fake_catalog.converge(spec)

        result = await reconciler.require_table(spec)

        assert executed_sql(mock_connector) == []
        assert not result.has_changes


class TestColumnConvergence:
    """Columns that exist but differ."""

    @pytest.mark.asyncio
    async def test_add_missing_column(self, reconciler, mock_connector, fake_catalog):
        fake_catalog.converge(pages({"Title": FieldSpec(kind="varchar")}))

        await reconciler.require_table(
            pages({"Title": FieldSpec(kind="varchar"), "Hits": FieldSpec(kind="int", nullable=False)})
        )

        assert executed_sql(mock_connector) == [
            'ALTER TABLE "public"."Pages" ADD COLUMN "Hits" integer DEFAULT 0 NOT NULL'
        ]

    @pytest.mark.asyncio
    async def test_undeclared_columns_are_kept(self, reconciler, mock_connector, fake_catalog):
        fake_catalog.converge(pages({"Title": FieldSpec(kind="varchar"), "Legacy": FieldSpec(kind="text")}))

        result = await reconciler.require_table(pages({"Title": FieldSpec(kind="varchar")}))

        assert executed_sql(mock_connector) == []
        assert result.status == ReconciliationStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_type_change(self, reconciler, mock_connector, fake_catalog):
        fake_catalog.converge(pages({"Title": FieldSpec(kind="varchar", precision=40)}))

        await reconciler.require_table(pages({"Title": FieldSpec(kind="varchar", precision=80)}))

        assert executed_sql(mock_connector) == [
            'ALTER TABLE "public"."Pages" ALTER COLUMN "Title" TYPE varchar(80) USING "Title"::varchar(80)'
        ]

    @pytest.mark.asyncio
    async def test_type_change_with_default(self, reconciler, mock_connector, fake_catalog):
        fake_catalog.converge(pages({"Hits": FieldSpec(kind="int", default=1)}))

        await reconciler.require_table(pages({"Hits": FieldSpec(kind="bigint", default=1)}))

        assert executed_sql(mock_connector) == [
            'ALTER TABLE "public"."Pages" ALTER COLUMN "Hits" DROP DEFAULT',
            'ALTER TABLE "public"."Pages" ALTER COLUMN "Hits" TYPE bigint USING "Hits"::bigint',
            'ALTER TABLE "public"."Pages" ALTER COLUMN "Hits" SET DEFAULT 1',
        ]

    @pytest.mark.asyncio
    async def test_nullability_change(self, reconciler, mock_connector, fake_catalog):
        fake_catalog.converge(pages({"Day": FieldSpec(kind="date")}))

        await reconciler.require_table(pages({"Day": FieldSpec(kind="date", nullable=False)}))

        assert executed_sql(mock_connector) == [
            'ALTER TABLE "public"."Pages" ALTER COLUMN "Day" SET NOT NULL'
        ]

    @pytest.mark.asyncio
    async def test_default_removed(self, reconciler, mock_connector, fake_catalog):
        fake_catalog.converge(pages({"Note": FieldSpec(kind="text", default="n/a")}))

        await reconciler.require_table(pages({"Note": FieldSpec(kind="text")}))

        assert executed_sql(mock_connector) == [
            'ALTER TABLE "public"."Pages" ALTER COLUMN "Note" DROP DEFAULT'
        ]

    @pytest.mark.asyncio
    async def test_missing_sequence_is_reported(self, reconciler, mock_connector, fake_catalog):
        fake_catalog.converge(pages({"ID": FieldSpec(kind="bigint", nullable=False)}))

        result = await reconciler.require_table(pages())

        assert executed_sql(mock_connector) == []
        assert "no sequence default" in result.warnings[0]


class TestEnumRepair:
    """Changing allowed enum values repairs rows before re-adding the CHECK."""

    @pytest.mark.asyncio
    async def test_repair_ordering(self, reconciler, mock_connector, fake_catalog):
        fake_catalog.converge(pages({"State": FieldSpec(kind="enum", values=["X", "Y"], default="X")}))
        fake_catalog.add_column("public", "Pages_Live", ColumnInfo(
            name="State", data_type="character varying", is_nullable=True, max_length=255,
        ))

        result = await reconciler.require_table(
            pages({"State": FieldSpec(kind="enum", values=["Y", "Z"], default="Y")})
        )

        assert result.status == ReconciliationStatus.SUCCESS
        assert executed_sql(mock_connector) == [
            'ALTER TABLE "public"."Pages" ALTER COLUMN "State" DROP DEFAULT',
            'ALTER TABLE "public"."Pages" ALTER COLUMN "State" SET DEFAULT \'Y\'',
            'ALTER TABLE "public"."Pages" DROP CONSTRAINT "Pages_State_check"',
            'UPDATE "public"."Pages" SET "State" = \'Y\' WHERE "State" NOT IN (\'Y\', \'Z\')',
            'UPDATE "public"."Pages_Live" SET "State" = \'Y\' WHERE "State" NOT IN (\'Y\', \'Z\')',
            'ALTER TABLE "public"."Pages" ADD CONSTRAINT "Pages_State_check" CHECK ("State" IN (\'Y\', \'Z\'))',
        ]
        repair = result.changes_applied[4]
        assert repair.change_type == ChangeType.REPAIR_DATA
        assert repair.table == "Pages_Live"

    @pytest.mark.asyncio
    async def test_repair_uses_first_value_without_default(self, reconciler, mock_connector, fake_catalog):
        fake_catalog.converge(pages({"Kind": FieldSpec(kind="enum", values=["a", "b"])}))

        await reconciler.require_table(pages({"Kind": FieldSpec(kind="enum", values=["b", "c"])}))

        sql = executed_sql(mock_connector)
        assert sql[0] == 'ALTER TABLE "public"."Pages" DROP CONSTRAINT "Pages_Kind_check"'
        assert sql[1] == 'UPDATE "public"."Pages" SET "Kind" = \'b\' WHERE "Kind" NOT IN (\'b\', \'c\')'
        assert sql[2].endswith('CHECK ("Kind" IN (\'b\', \'c\'))')

    @pytest.mark.asyncio
    async def test_plain_column_becomes_enum(self, reconciler, mock_connector, fake_catalog):
        fake_catalog.converge(pages({"Kind": FieldSpec(kind="varchar", default="a")}))

        await reconciler.require_table(
            pages({"Kind": FieldSpec(kind="enum", values=["a", "b"], default="a")})
        )

        sql = executed_sql(mock_connector)
        assert not any("DROP CONSTRAINT" in s for s in sql)
        assert sql[-2].startswith('UPDATE "public"."Pages" SET "Kind" = \'a\'')
        assert sql[-1].startswith('ALTER TABLE "public"."Pages" ADD CONSTRAINT "Pages_Kind_check"')

    @pytest.mark.asyncio
    async def test_enum_becomes_plain_column(self, reconciler, mock_connector, fake_catalog):
        fake_catalog.converge(pages({"Kind": FieldSpec(kind="enum", values=["a", "b"], default="a")}))

        await reconciler.require_table(pages({"Kind": FieldSpec(kind="varchar", default="a")}))

        assert executed_sql(mock_connector) == [
            'ALTER TABLE "public"."Pages" DROP CONSTRAINT "Pages_Kind_check"'
        ]

    @pytest.mark.asyncio
    async def test_unparseable_check_is_a_warning(self, reconciler, mock_connector, fake_catalog):
        fake_catalog.converge(pages({"Kind": FieldSpec(kind="enum", values=["a", "b"], default="a")}))
        fake_catalog.add_constraint("public", "Pages", "Pages_Kind_check", "CHECK ((length((\"Kind\")::text) > 0))")

        result = await reconciler.require_table(
            pages({"Kind": FieldSpec(kind="enum", values=["a", "b"], default="a")})
        )

        assert result.status == ReconciliationStatus.SUCCESS
        assert "unparseable CHECK constraint" in result.warnings[0]
        assert [c.change_type for c in result.changes_applied] == [
            ChangeType.DROP_CONSTRAINT, ChangeType.REPAIR_DATA, ChangeType.ADD_CONSTRAINT,
        ]


class TestIndexConvergence:
    """Regular indexes and fulltext units on existing tables."""

    @pytest.fixture
    def indexed(self):
        return pages(
            {"Title": FieldSpec(kind="varchar"), "Body": FieldSpec(kind="text")},
            {
                "title": {"columns": ["Title"]},
                "search": {"kind": "fulltext", "columns": ["Title", "Body"]},
            },
        )

    @pytest.mark.asyncio
    async def test_fulltext_columns_change(self, reconciler, mock_connector, fake_catalog, indexed):
        fake_catalog.converge(indexed)
        narrowed = pages(
            {"Title": FieldSpec(kind="varchar"), "Body": FieldSpec(kind="text")},
            {
                "title": {"columns": ["Title"]},
                "search": {"kind": "fulltext", "columns": ["Title"]},
            },
        )
        digest = name_digest("Pages", "search")

        result = await reconciler.require_table(narrowed)

        assert executed_sql(mock_connector) == [
            f'DROP TRIGGER IF EXISTS "ts_{digest}" ON "public"."Pages"',
            'ALTER TABLE "public"."Pages" DROP COLUMN IF EXISTS "ts_search"',
            'ALTER TABLE "public"."Pages" ADD COLUMN "ts_search" tsvector',
            f'CREATE TRIGGER "ts_{digest}" BEFORE INSERT OR UPDATE ON "public"."Pages" FOR EACH ROW '
            "EXECUTE PROCEDURE tsvector_update_trigger(\"ts_search\", 'pg_catalog.english', \"Title\")",
            'UPDATE "public"."Pages" SET "Title" = "Title"',
            f'CREATE INDEX "ix_{digest}" ON "public"."Pages" USING GIN ("ts_search")',
        ]
        kinds = [c.change_type for c in result.changes_applied]
        assert kinds.count(ChangeType.ADD_SHADOW_COLUMN) == 1
        assert kinds.count(ChangeType.CREATE_TRIGGER) == 1
        assert kinds.count(ChangeType.CREATE_INDEX) == 1

    @pytest.mark.asyncio
    async def test_new_fulltext_unit(self, reconciler, mock_connector, fake_catalog, indexed):
        fake_catalog.converge(pages({"Title": FieldSpec(kind="varchar"), "Body": FieldSpec(kind="text")}))

        await reconciler.require_table(indexed)

        kinds = [c.change_type for c in reconciler.operations.history]
        assert kinds == [
            ChangeType.CREATE_INDEX,
            ChangeType.ADD_SHADOW_COLUMN,
            ChangeType.CREATE_TRIGGER,
            ChangeType.BACKFILL,
            ChangeType.CREATE_INDEX,
        ]

    @pytest.mark.asyncio
    async def test_missing_fulltext_index_only(self, reconciler, mock_connector, fake_catalog, indexed):
        fake_catalog.converge(indexed)
        del fake_catalog.indexes[("public", "Pages")][f"ix_{name_digest('Pages', 'search')}"]

        await reconciler.require_table(indexed)

        sql = executed_sql(mock_connector)
        assert len(sql) == 1
        assert sql[0].startswith(f'CREATE INDEX "ix_{name_digest("Pages", "search")}"')

    @pytest.mark.asyncio
    async def test_fulltext_method_change(self, mock_connector, fake_catalog, indexed):
        fake_catalog.converge(indexed)
        reconciler = SchemaReconciler(mock_connector, introspector=fake_catalog)
        reconciler.synthesizer.fulltext_method = "GIST"

        await reconciler.require_table(indexed)

        digest = name_digest("Pages", "search")
        assert executed_sql(mock_connector) == [
            f'DROP INDEX IF EXISTS "public"."ix_{digest}"',
            f'CREATE INDEX "ix_{digest}" ON "public"."Pages" USING GIST ("ts_search")',
        ]

    @pytest.mark.asyncio
    async def test_fulltext_predicate_removed(self, reconciler, mock_connector, fake_catalog, indexed):
        fake_catalog.converge(indexed)
        digest = name_digest("Pages", "search")
        fake_catalog.indexes[("public", "Pages")][f"ix_{digest}"].predicate = '("Title" IS NOT NULL)'

        await reconciler.require_table(indexed)

        assert executed_sql(mock_connector) == [
            f'DROP INDEX IF EXISTS "public"."ix_{digest}"',
            f'CREATE INDEX "ix_{digest}" ON "public"."Pages" USING GIN ("ts_search")',
        ]

    @pytest.mark.asyncio
    async def test_fulltext_predicate_added(self, reconciler, mock_connector, fake_catalog, indexed):
        fake_catalog.converge(indexed)
        partial = pages(
            {"Title": FieldSpec(kind="varchar"), "Body": FieldSpec(kind="text")},
            {
                "title": {"columns": ["Title"]},
                "search": {"kind": "fulltext", "columns": ["Title", "Body"], "where": '"Title" IS NOT NULL'},
            },
        )
        digest = name_digest("Pages", "search")

        await reconciler.require_table(partial)

        assert executed_sql(mock_connector) == [
            f'DROP INDEX IF EXISTS "public"."ix_{digest}"',
            f'CREATE INDEX "ix_{digest}" ON "public"."Pages" USING GIN ("ts_search") WHERE "Title" IS NOT NULL',
        ]

    @pytest.mark.asyncio
    async def test_changed_regular_index(self, reconciler, mock_connector, fake_catalog, indexed):
        fake_catalog.converge(indexed)
        changed = pages(
            {"Title": FieldSpec(kind="varchar"), "Body": FieldSpec(kind="text")},
            {
                "title": {"kind": "unique", "columns": ["Title"]},
                "search": {"kind": "fulltext", "columns": ["Title", "Body"]},
            },
        )
        name = f"ix_{name_digest('Pages', 'title')}"

        await reconciler.require_table(changed)

        assert executed_sql(mock_connector) == [
            f'DROP INDEX IF EXISTS "public"."{name}"',
            f'CREATE UNIQUE INDEX "{name}" ON "public"."Pages" ("Title")',
        ]

    @pytest.mark.asyncio
    async def test_index_stored_under_logical_name(self, reconciler, mock_connector, fake_catalog, indexed):
        fake_catalog.converge(indexed)
        name = f"ix_{name_digest('Pages', 'title')}"
        stale = fake_catalog.indexes[("public", "Pages")].pop(name)
        stale.name = "title"
        fake_catalog.add_index("public", "Pages", stale)

        await reconciler.require_table(indexed)

        assert executed_sql(mock_connector) == [
            'DROP INDEX IF EXISTS "public"."title"',
            f'CREATE INDEX "{name}" ON "public"."Pages" ("Title")',
        ]


class TestTableOptions:

    @pytest.mark.asyncio
    async def test_cluster_applied(self, reconciler, mock_connector, fake_catalog, partitioned_spec):
        fake_catalog.converge(partitioned_spec)
        del fake_catalog.clustered[("public", "Events")]

        await reconciler.require_table(partitioned_spec)

        assert executed_sql(mock_connector) == [
            f'CLUSTER "public"."Events" USING "ix_{name_digest("Events", "year")}"'
        ]

    @pytest.mark.asyncio
    async def test_cluster_removed(self, reconciler, mock_connector, fake_catalog):
        spec = pages({"Title": FieldSpec(kind="varchar")}, {"title": {"columns": ["Title"]}})
        fake_catalog.converge(spec)
        fake_catalog.clustered[("public", "Pages")] = f"ix_{name_digest('Pages', 'title')}"

        await reconciler.require_table(spec)

        assert executed_sql(mock_connector) == ['ALTER TABLE "public"."Pages" SET WITHOUT CLUSTER']

    @pytest.mark.asyncio
    async def test_move_to_tablespace(self, reconciler, mock_connector, fake_catalog, partitioned_spec):
        fake_catalog.converge(partitioned_spec)
        del fake_catalog.table_spaces[("public", "Events")]

        await reconciler.require_table(partitioned_spec)

        assert executed_sql(mock_connector) == ['ALTER TABLE "public"."Events" SET TABLESPACE "fast"']

    @pytest.mark.asyncio
    async def test_tablespace_location_changed(self, reconciler, mock_connector, fake_catalog, partitioned_spec):
        fake_catalog.converge(partitioned_spec)
        fake_catalog.tablespaces["fast"] = "/mnt/old"

        result = await reconciler.require_table(partitioned_spec)

        assert executed_sql(mock_connector) == [
            'DROP TABLESPACE "fast"',
            "CREATE TABLESPACE \"fast\" LOCATION '/mnt/fast'",
        ]
        assert result.changes_applied[0].change_type == ChangeType.DROP_TABLESPACE


class TestFailures:
    """Statement failures end the table, not the batch."""

    @pytest.mark.asyncio
    async def test_first_statement_fails(self, reconciler, mock_connector, articles_spec):
        mock_connector.query.side_effect = StatementError("CREATE TABLE", "permission denied for schema public")

        result = await reconciler.require_table(articles_spec)

        assert result.status == ReconciliationStatus.FAILED
        assert "permission denied" in result.errors[0]
        assert result.failed_changes == 1
        assert mock_connector.query.await_count == 1

    @pytest.mark.asyncio
    async def test_later_statement_fails(self, reconciler, mock_connector, articles_spec):
        mock_connector.query.side_effect = [
            QueryResult(status="CREATE TABLE"),
            StatementError("CREATE INDEX", "out of memory"),
        ]

        result = await reconciler.require_table(articles_spec)

        assert result.status == ReconciliationStatus.PARTIAL
        assert result.successful_changes == 1
        assert mock_connector.query.await_count == 2

    @pytest.mark.asyncio
    async def test_connection_loss_propagates(self, reconciler, mock_connector, articles_spec):
        mock_connector.query.side_effect = DatabaseConnectionError("Connection lost")

        with pytest.raises(DatabaseConnectionError):
            await reconciler.require_table(articles_spec)

    @pytest.mark.asyncio
    async def test_reconcile_all_continues_after_failure(self, reconciler, mock_connector, articles_spec):
        mock_connector.query.side_effect = [StatementError("CREATE TABLE", "boom")] + [
            QueryResult(status="OK")
        ] * 10

        results = await reconciler.reconcile_all([articles_spec, pages({"A": {"kind": "text"}})])

        assert results["Articles"].status == ReconciliationStatus.FAILED
        assert results["Pages"].status == ReconciliationStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_reconcile_all_stop_on_error(self, reconciler, mock_connector, articles_spec):
        mock_connector.query.side_effect = StatementError("CREATE TABLE", "boom")

        results = await reconciler.reconcile_all(
            [articles_spec, pages({"A": {"kind": "text"}})], stop_on_error=True
        )

        assert results["Articles"].status == ReconciliationStatus.FAILED
        assert results["Pages"].status == ReconciliationStatus.SKIPPED
        assert mock_connector.query.await_count == 1

        summary = reconciler.get_reconciliation_summary(results)
        assert summary["tables"] == 2
        assert summary["by_status"] == {"failed": 1, "skipped": 1}
        assert summary["failed_tables"] == ["Articles"]


class TestTableOperations:
    """Retiring, renaming and inspecting tables."""

    @pytest.mark.asyncio
    async def test_require_field(self, reconciler, mock_connector, fake_catalog):
        fake_catalog.converge(pages({"Title": FieldSpec(kind="varchar")}))

        result = await reconciler.require_field("Pages", "Summary", FieldSpec(kind="text"))

        assert result.statements == ['ALTER TABLE "public"."Pages" ADD COLUMN "Summary" text']

    @pytest.mark.asyncio
    async def test_require_field_missing_table(self, reconciler):
        result = await reconciler.require_field("Nope", "A", FieldSpec(kind="text"))

        assert result.status == ReconciliationStatus.FAILED
        assert "does not exist" in result.errors[0]

    @pytest.mark.asyncio
    async def test_dont_require_table(self, reconciler, mock_connector, fake_catalog):
        fake_catalog.converge(pages())
        fake_catalog.columns[("public", "_obsolete_Pages")] = {}

        result = await reconciler.dont_require_table("Pages")

        assert result.statements == ['ALTER TABLE "public"."Pages" RENAME TO "_obsolete_Pages_2"']

    @pytest.mark.asyncio
    async def test_dont_require_missing_table(self, reconciler, mock_connector):
        result = await reconciler.dont_require_table("Nope")

        assert result.status == ReconciliationStatus.SKIPPED
        mock_connector.query.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rename_table(self, reconciler):
        result = await reconciler.rename_table("Pages", "Documents")

        assert result.statements == ['ALTER TABLE "public"."Pages" RENAME TO "Documents"']

    @pytest.mark.asyncio
    async def test_rename_field(self, reconciler, fake_catalog):
        fake_catalog.converge(pages({"Title": FieldSpec(kind="varchar")}))

        result = await reconciler.rename_field("Pages", "Title", "Heading")
        missing = await reconciler.rename_field("Pages", "Nope", "Other")

        assert result.statements == ['ALTER TABLE "public"."Pages" RENAME COLUMN "Title" TO "Heading"']
        assert missing.status == ReconciliationStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_check_and_repair_table(self, reconciler):
        result = await reconciler.check_and_repair_table("Pages")

        assert result.statements == [
            'VACUUM FULL ANALYZE "public"."Pages"',
            'REINDEX TABLE "public"."Pages"',
        ]

    @pytest.mark.asyncio
    async def test_field_list(self, reconciler, fake_catalog, articles_spec):
        fake_catalog.converge(articles_spec)

        fields = await reconciler.field_list("Articles")

        assert "ts_search" not in fields
        assert list(fields) == list(articles_spec.fields)
        assert fields["State"].kind == FieldKind.ENUM
        assert fields["State"].values == ["draft", "published"]
        assert fields["ID"].auto_increment

    @pytest.mark.asyncio
    async def test_enum_values_for_field(self, reconciler, fake_catalog, articles_spec):
        fake_catalog.converge(articles_spec)

        assert await reconciler.enum_values_for_field("Articles", "State") == ["draft", "published"]
        assert await reconciler.enum_values_for_field("Articles", "Title") == []

    @pytest.mark.asyncio
    async def test_table_list(self, reconciler, fake_catalog, articles_spec):
        fake_catalog.converge(articles_spec)

        assert await reconciler.table_list() == ["Articles"]


class TestFromConfig:

    def test_from_config(self, mock_connector):
        config = PgConvergeConfig(
            search={"language": "simple", "index_method": "gist"},
            schema_management={"default_schema": "app", "mode": "dry_run", "identifier_max_length": 40},
        )

        reconciler = SchemaReconciler.from_config(mock_connector, config)

        assert reconciler.schema == "app"
        assert reconciler.operations.dry_run
        assert reconciler.synthesizer.language == "simple"
        assert reconciler.synthesizer.fulltext_method == "GIST"
        assert reconciler.identifiers.max_length == 40
        assert reconciler.codec.identifiers.max_length == 40
