"""
Tests for SchemaDiffer.
"""

import copy

import pytest

from schemashift.migrations.differ import SchemaDiffer
from schemashift.migrations.schema import (
    ColumnChangeType,
    ColumnDefinition,
    DatabaseSchema,
    ForeignKeyDefinition,
    IndexDefinition,
    TableDefinition,
)

pytestmark = pytest.mark.unit


def users_table() -> TableDefinition:
    return TableDefinition(
        name="users",
        columns=[
            ColumnDefinition("id", "int", nullable=False, primary=True, auto_increment=True),
            ColumnDefinition("email", "varchar", length=255, nullable=False, unique=True),
            ColumnDefinition("status", "varchar", length=20, default="active"),
        ],
        indexes=[IndexDefinition("idx_users_email", ["email"], unique=True)],
    )


def posts_table() -> TableDefinition:
    return TableDefinition(
        name="posts",
        columns=[
            ColumnDefinition("id", "int", nullable=False, primary=True, auto_increment=True),
            ColumnDefinition("user_id", "int", nullable=False),
            ColumnDefinition("body", "text"),
        ],
        indexes=[IndexDefinition("fk_posts_user_id", ["user_id"])],
        foreign_keys=[ForeignKeyDefinition("fk_posts_user_id", "user_id", "users", "id")],
    )


@pytest.fixture
def differ():
    return SchemaDiffer()


class TestTableDiff:
    """Test table level changes."""

    def test_identical_schemas_produce_empty_diff(self, differ):
        schema = DatabaseSchema([users_table(), posts_table()])

        diff = differ.diff(schema, copy.deepcopy(schema))

        assert diff.is_empty()

    def test_new_table_is_created(self, differ):
        current = DatabaseSchema([users_table()])
        desired = DatabaseSchema([users_table(), posts_table()])

        diff = differ.diff(current, desired)

        assert [t.name for t in diff.tables_to_create] == ["posts"]
        assert diff.tables_to_drop == []
        assert not diff.is_destructive()

    def test_missing_table_is_dropped(self, differ):
        current = DatabaseSchema([users_table(), posts_table()])
        desired = DatabaseSchema([users_table()])

        diff = differ.diff(current, desired)

        assert diff.tables_to_drop == ["posts"]
        assert diff.is_destructive()

    def test_renamed_table_is_not_dropped_or_created(self, differ):
        current = DatabaseSchema([users_table()])
        renamed = users_table()
        renamed.name = "people"
        desired = DatabaseSchema([renamed])

        diff = differ.diff(current, desired)

        assert [(r.from_name, r.to_name) for r in diff.tables_to_rename] == [("users", "people")]
        assert diff.tables_to_create == []
        assert diff.tables_to_drop == []

    def test_rejected_table_rename_becomes_drop_and_create(self, differ):
        current = DatabaseSchema([users_table()])
        renamed = users_table()
        renamed.name = "people"
        desired = DatabaseSchema([renamed])

        diff = differ.diff(current, desired, rejected_table_renames={("users", "people")})

        assert diff.tables_to_rename == []
        assert [t.name for t in diff.tables_to_create] == ["people"]
        assert diff.tables_to_drop == ["users"]

    def test_renamed_table_columns_are_compared(self, differ):
        current = DatabaseSchema([users_table()])
        renamed = users_table()
        renamed.name = "user"
        renamed.columns.append(ColumnDefinition("nickname", "varchar", length=50))
        desired = DatabaseSchema([renamed])

        diff = differ.diff(current, desired)

        assert [r.to_name for r in diff.tables_to_rename] == ["user"]
        assert [(e.table, e.column.name) for e in diff.columns_to_add] == [
            ("user", "nickname")
        ]

    def test_empty_table_names_are_ignored(self, differ):
        current = DatabaseSchema([users_table()])
        desired = DatabaseSchema([users_table(), TableDefinition("")])

        assert differ.diff(current, desired).is_empty()


class TestColumnDiff:
    """Test column level changes."""

    def test_single_added_nullable_column(self, differ):
        current = DatabaseSchema([users_table()])
        desired_table = users_table()
        desired_table.columns.append(ColumnDefinition("bio", "text"))
        desired = DatabaseSchema([desired_table])

        diff = differ.diff(current, desired)

        assert len(diff.columns_to_add) == 1
        assert diff.columns_to_add[0].table == "users"
        assert diff.columns_to_add[0].column.name == "bio"
        assert diff.columns_to_remove == []
        assert diff.columns_to_modify == []
        assert diff.columns_to_rename == []
        assert diff.tables_to_create == []

    def test_removed_column_keeps_definition(self, differ):
        current = DatabaseSchema([users_table()])
        desired_table = users_table()
        desired_table.columns = [c for c in desired_table.columns if c.name != "status"]
        desired = DatabaseSchema([desired_table])

        diff = differ.diff(current, desired)

        assert [(e.table, e.column) for e in diff.columns_to_remove] == [("users", "status")]
        assert diff.columns_to_remove[0].definition.default == "active"
        assert diff.is_destructive()

    def test_renamed_column_is_neither_added_nor_removed(self, differ):
        current_table = users_table()
        current_table.columns.append(ColumnDefinition("user_name", "varchar", length=100))
        desired_table = users_table()
        desired_table.columns.append(ColumnDefinition("username", "varchar", length=100))

        diff = differ.diff(DatabaseSchema([current_table]), DatabaseSchema([desired_table]))

        assert [(r.from_name, r.to_name) for r in diff.columns_to_rename] == [
            ("user_name", "username")
        ]
        assert diff.columns_to_add == []
        assert diff.columns_to_remove == []

    def test_rejected_column_rename(self, differ):
        current_table = users_table()
        current_table.columns.append(ColumnDefinition("user_name", "varchar", length=100))
        desired_table = users_table()
        desired_table.columns.append(ColumnDefinition("username", "varchar", length=100))

        diff = differ.diff(
            DatabaseSchema([current_table]),
            DatabaseSchema([desired_table]),
            rejected_column_renames={("users", "user_name", "username")},
        )

        assert diff.columns_to_rename == []
        assert [e.column.name for e in diff.columns_to_add] == ["username"]
        assert [e.column for e in diff.columns_to_remove] == ["user_name"]

    def test_type_change(self, differ):
        desired_table = users_table()
        desired_table.get_column("status").length = 40

        diff = differ.diff(DatabaseSchema([users_table()]), DatabaseSchema([desired_table]))

        assert len(diff.columns_to_modify) == 1
        change = diff.columns_to_modify[0]
        assert change.change_type == ColumnChangeType.TYPE_CHANGE
        assert (change.from_value, change.to_value) == ("varchar(20)", "varchar(40)")
        assert change.previous.length == 20
        assert change.definition.length == 40

    def test_type_aliases_are_not_changes(self, differ):
        current_table = users_table()
        desired_table = users_table()
        desired_table.get_column("id").type = "INTEGER"

        assert differ.diff(DatabaseSchema([current_table]), DatabaseSchema([desired_table])).is_empty()

    def test_display_width_of_integers_is_ignored(self, differ):
        current_table = users_table()
        current_table.get_column("id").length = 11

        assert differ.diff(DatabaseSchema([current_table]), DatabaseSchema([users_table()])).is_empty()

    @pytest.mark.parametrize("type_name,catalog_length", [("decimal", 10), ("binary", 1), ("varbinary", 255)])
    def test_bare_sized_type_matches_catalog_default(self, differ, type_name, catalog_length):
        current_table = users_table()
        current_table.columns.append(ColumnDefinition("amount", type_name, length=catalog_length))
        desired_table = users_table()
        desired_table.columns.append(ColumnDefinition("amount", type_name))

        assert differ.diff(DatabaseSchema([current_table]), DatabaseSchema([desired_table])).is_empty()

    def test_decimal_precision_change(self, differ):
        current_table = users_table()
        current_table.columns.append(ColumnDefinition("amount", "decimal", length=10))
        desired_table = users_table()
        desired_table.columns.append(ColumnDefinition("amount", "decimal", length=12))

        diff = differ.diff(DatabaseSchema([current_table]), DatabaseSchema([desired_table]))

        assert [c.change_type for c in diff.columns_to_modify] == [ColumnChangeType.TYPE_CHANGE]

    def test_nullable_change(self, differ):
        desired_table = users_table()
        desired_table.get_column("status").nullable = False

        diff = differ.diff(DatabaseSchema([users_table()]), DatabaseSchema([desired_table]))

        assert [c.change_type for c in diff.columns_to_modify] == [
            ColumnChangeType.NULLABLE_CHANGE
        ]

    def test_default_change(self, differ):
        desired_table = users_table()
        desired_table.get_column("status").default = "pending"

        diff = differ.diff(DatabaseSchema([users_table()]), DatabaseSchema([desired_table]))

        change = diff.columns_to_modify[0]
        assert change.change_type == ColumnChangeType.DEFAULT_CHANGE
        assert (change.from_value, change.to_value) == ("active", "pending")

    def test_equivalent_default_representations(self, differ):
        current_table = users_table()
        current_table.columns.append(ColumnDefinition("active", "tinyint", default="1"))
        current_table.columns.append(ColumnDefinition("score", "int", default="0"))
        desired_table = users_table()
        desired_table.columns.append(ColumnDefinition("active", "boolean", default=True))
        desired_table.columns.append(ColumnDefinition("score", "int", default=0))

        diff = differ.diff(DatabaseSchema([current_table]), DatabaseSchema([desired_table]))

        assert diff.is_empty()

    def test_all_change_flags_reported(self, differ):
        desired_table = users_table()
        status = desired_table.get_column("status")
        status.type = "text"
        status.nullable = False
        status.default = None

        diff = differ.diff(DatabaseSchema([users_table()]), DatabaseSchema([desired_table]))

        assert {c.change_type for c in diff.columns_to_modify} == set(ColumnChangeType)


class TestIndexAndForeignKeyDiff:
    """Indexes and foreign keys are compared by name only."""

    def test_index_added_and_removed(self, differ):
        current_table = users_table()
        desired_table = users_table()
        desired_table.indexes = [IndexDefinition("idx_users_status", ["status"])]

        diff = differ.diff(DatabaseSchema([current_table]), DatabaseSchema([desired_table]))

        assert [(e.table, e.index.name) for e in diff.indexes_to_add] == [
            ("users", "idx_users_status")
        ]
        assert [(e.table, e.index) for e in diff.indexes_to_remove] == [
            ("users", "idx_users_email")
        ]
        assert diff.indexes_to_remove[0].definition.columns == ["email"]

    def test_index_column_change_with_same_name_is_ignored(self, differ):
        desired_table = users_table()
        desired_table.indexes[0].columns = ["email", "status"]

        assert differ.diff(DatabaseSchema([users_table()]), DatabaseSchema([desired_table])).is_empty()

    def test_foreign_key_added_and_removed(self, differ):
        current_posts = posts_table()
        desired_posts = posts_table()
        desired_posts.foreign_keys = [
            ForeignKeyDefinition("fk_posts_author", "user_id", "users", "id", on_delete="CASCADE")
        ]
        current = DatabaseSchema([users_table(), current_posts])
        desired = DatabaseSchema([users_table(), desired_posts])

        diff = differ.diff(current, desired)

        assert [e.foreign_key.name for e in diff.foreign_keys_to_add] == ["fk_posts_author"]
        assert [e.foreign_key for e in diff.foreign_keys_to_remove] == ["fk_posts_user_id"]
        assert diff.foreign_keys_to_remove[0].definition.referenced_table == "users"
