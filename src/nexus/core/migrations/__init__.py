"""Schema initialization and migration engine for the Nexus live store.

Manifesto:
    There is no migration-version table. Every startup introspects the live
    catalog and does only what the column sets say is missing, so running
    the engine twice is the same as running it once.

Modules
-------
introspection    ColumnIntrospector: live column sets via PRAGMA table_info
schema_applier   SchemaApplier: idempotent init.sql, best-effort per statement
expected         Declared table shapes (the single source of expected columns)
table_migrator   TableMigrator: no-op / ADD COLUMN / rename-create-copy-drop
legacy_import    LegacyStoreImporter: ATTACH, copy one settings row, normalize
scheduler        MigrationScheduler: synchronous phase + bounded background import

Tags:
    nexus-core, migrations, schema, sqlite, idempotent, DDL
"""

from nexus.core.migrations.expected import EXPECTED_TABLES, ColumnSpec, RebuildRule, TableSpec
from nexus.core.migrations.introspection import ColumnIntrospector, TableSchema
from nexus.core.migrations.legacy_import import (
    ImportReport,
    ImportSelection,
    LegacyImportPlan,
    LegacyStoreImporter,
    canonical_theme,
)
from nexus.core.migrations.scheduler import MigrationScheduler, MigrationState
from nexus.core.migrations.schema_applier import SchemaApplier, SchemaApplyReport
from nexus.core.migrations.table_migrator import (
    DecisionKind,
    MigrationDecision,
    TableMigrator,
    decide,
)

__all__ = [
    "EXPECTED_TABLES",
    "ColumnIntrospector",
    "ColumnSpec",
    "DecisionKind",
    "ImportReport",
    "ImportSelection",
    "LegacyImportPlan",
    "LegacyStoreImporter",
    "MigrationDecision",
    "MigrationScheduler",
    "MigrationState",
    "RebuildRule",
    "SchemaApplier",
    "SchemaApplyReport",
    "TableMigrator",
    "TableSchema",
    "TableSpec",
    "canonical_theme",
    "decide",
]
