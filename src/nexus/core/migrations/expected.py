"""Expected table shapes.

One declaration per table the application reads: its columns with type and
default, its indexes, and, where a column changed meaning, the rule that
turns an old shape into the new one. ``TableMigrator`` compares these
against the live catalog; nothing else in the engine names columns.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# SQLite refuses these as ADD COLUMN defaults
_NON_CONSTANT_DEFAULTS = frozenset({"CURRENT_TIMESTAMP", "CURRENT_TIME", "CURRENT_DATE"})


@dataclass(frozen=True)
class ColumnSpec:
    """One expected column."""

    name: str
    type: str = "TEXT"
    default: str | None = None
    not_null: bool = False
    primary_key: bool = False
    unique: bool = False

    @property
    def constant_default(self) -> bool:
        if self.default is None:
            return True
        value = self.default.strip()
        return value.upper() not in _NON_CONSTANT_DEFAULTS and not value.startswith("(")

    @property
    def can_add(self) -> bool:
        """Whether ``ALTER TABLE ... ADD COLUMN`` can add this column safely.

        Key columns and NOT NULL columns without a constant default need a
        rebuild instead.
        """
        if self.primary_key or self.unique:
            return False
        if self.not_null and (self.default is None or not self.constant_default):
            return False
        return True

    def definition(self) -> str:
        """Column definition as used inside ``CREATE TABLE``."""
        parts = [self.name, self.type]
        if self.primary_key:
            parts.append("PRIMARY KEY AUTOINCREMENT")
        if self.not_null:
            parts.append("NOT NULL")
        if self.unique:
            parts.append("UNIQUE")
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        return " ".join(parts)

    def add_definition(self) -> str:
        """Column definition for ``ADD COLUMN``; non-constant defaults are dropped."""
        parts = [self.name, self.type]
        if self.not_null:
            parts.append("NOT NULL")
        if self.default is not None and self.constant_default:
            parts.append(f"DEFAULT {self.default}")
        return " ".join(parts)


@dataclass(frozen=True)
class RebuildRule:
    """When a table needs rename/create/copy/drop, and how rows map across.

    The rule fires when the live table has ``present`` but lacks ``absent``.
    ``column_sources`` lists, per new column, the old columns to copy from in
    order of preference; unlisted columns copy from the same name.
    """

    present: str
    absent: str
    column_sources: dict[str, tuple[str, ...]] = field(default_factory=dict)

    def triggered_by(self, live_columns) -> bool:
        live = {c.lower() for c in live_columns}
        return self.present.lower() in live and self.absent.lower() not in live

    def sources_for(self, column: str) -> tuple[str, ...]:
        return self.column_sources.get(column, (column,))


@dataclass(frozen=True)
class TableSpec:
    """Declared shape of one application table."""

    name: str
    columns: tuple[ColumnSpec, ...]
    constraints: tuple[str, ...] = ()
    indexes: tuple[str, ...] = ()
    rebuild: RebuildRule | None = None

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def create_sql(self, name: str | None = None) -> str:
        body = [f"    {c.definition()}" for c in self.columns]
        body.extend(f"    {c}" for c in self.constraints)
        joined = ",\n".join(body)
        return f"CREATE TABLE IF NOT EXISTS {name or self.name} (\n{joined}\n)"


def _id() -> ColumnSpec:
    return ColumnSpec("id", "INTEGER", primary_key=True)


PROFILE = TableSpec(
    name="profile",
    columns=(
        _id(),
        ColumnSpec("name", "TEXT", not_null=True),
        ColumnSpec("avatar_path", "TEXT"),
        ColumnSpec("password_hash", "TEXT"),
        ColumnSpec("is_guest", "BOOLEAN", default="0"),
        ColumnSpec("logged_in", "BOOLEAN", default="1"),
    ),
)

SETTINGS = TableSpec(
    name="settings",
    columns=(
        _id(),
        ColumnSpec("user_id", "INTEGER", default="1"),
        ColumnSpec("theme", "TEXT", default="'main'"),
        ColumnSpec("accent_color", "TEXT"),
        ColumnSpec("search_engine", "TEXT"),
        ColumnSpec("home_page", "TEXT"),
        ColumnSpec("startup_behavior", "TEXT"),
        ColumnSpec("restore_session", "INTEGER", default="0"),
        ColumnSpec("clear_history_on_exit", "INTEGER", default="0"),
        ColumnSpec("dark_mode", "INTEGER", default="0"),
        ColumnSpec("high_contrast", "INTEGER", default="0"),
    ),
    indexes=("CREATE UNIQUE INDEX IF NOT EXISTS idx_settings_user ON settings(user_id)",),
)

TABS = TableSpec(
    name="tabs",
    columns=(
        _id(),
        ColumnSpec("profile_id", "INTEGER", default="1"),
        ColumnSpec("title", "TEXT"),
        ColumnSpec("url", "TEXT"),
        ColumnSpec("favicon_url", "TEXT"),
        ColumnSpec("is_pinned", "INTEGER", default="0"),
        ColumnSpec("is_active", "INTEGER", default="0"),
        ColumnSpec("position", "INTEGER", default="0"),
        ColumnSpec("session_id", "TEXT"),
    ),
    indexes=("CREATE INDEX IF NOT EXISTS idx_tabs_profile ON tabs(profile_id)",),
    # tabs.user_id was re-targeted from users to profiles
    rebuild=RebuildRule(
        present="user_id",
        absent="profile_id",
        column_sources={"profile_id": ("profile_id", "user_id")},
    ),
)

BOOKMARK_FOLDERS = TableSpec(
    name="bookmark_folders",
    columns=(
        _id(),
        ColumnSpec("user_id", "INTEGER", default="1"),
        ColumnSpec("name", "TEXT", not_null=True),
        ColumnSpec("parent_folder_id", "INTEGER"),
        ColumnSpec("position", "INTEGER", default="0"),
        ColumnSpec("is_favorite", "INTEGER", default="0"),
        ColumnSpec("created_at", "TIMESTAMP", default="CURRENT_TIMESTAMP"),
        ColumnSpec("updated_at", "TIMESTAMP", default="CURRENT_TIMESTAMP"),
    ),
    constraints=(
        "FOREIGN KEY (parent_folder_id) REFERENCES bookmark_folders(id) ON DELETE CASCADE",
    ),
)

BOOKMARKS = TableSpec(
    name="bookmarks",
    columns=(
        _id(),
        ColumnSpec("user_id", "INTEGER", default="1"),
        ColumnSpec("title", "TEXT"),
        ColumnSpec("url", "TEXT", not_null=True),
        ColumnSpec("favicon_url", "TEXT"),
        ColumnSpec("folder_id", "INTEGER"),
        ColumnSpec("position", "INTEGER", default="0"),
        ColumnSpec("is_favorite", "INTEGER", default="0"),
        ColumnSpec("created_at", "TIMESTAMP", default="CURRENT_TIMESTAMP"),
        ColumnSpec("updated_at", "TIMESTAMP", default="CURRENT_TIMESTAMP"),
        ColumnSpec("description", "TEXT"),
        ColumnSpec("tags", "TEXT"),
    ),
    constraints=(
        "FOREIGN KEY (folder_id) REFERENCES bookmark_folders(id) ON DELETE SET NULL",
    ),
    indexes=("CREATE INDEX IF NOT EXISTS idx_bookmarks_folder ON bookmarks(folder_id)",),
)

DOWNLOADS = TableSpec(
    name="downloads",
    columns=(
        _id(),
        ColumnSpec("user_id", "INTEGER", default="1"),
        ColumnSpec("url", "TEXT", not_null=True),
        ColumnSpec("file_name", "TEXT"),
        ColumnSpec("file_path", "TEXT"),
        ColumnSpec("file_size", "INTEGER", default="0"),
        ColumnSpec("downloaded_size", "INTEGER", default="0"),
        ColumnSpec("status", "TEXT"),
        ColumnSpec("start_time", "TIMESTAMP"),
        ColumnSpec("end_time", "TIMESTAMP"),
    ),
)

HISTORY = TableSpec(
    name="history",
    columns=(
        _id(),
        ColumnSpec("user_id", "INTEGER", default="1"),
        ColumnSpec("title", "TEXT"),
        ColumnSpec("url", "TEXT", not_null=True),
        ColumnSpec("favicon_url", "TEXT"),
        ColumnSpec("visit_count", "INTEGER", default="1"),
        ColumnSpec("last_visit", "TIMESTAMP", default="CURRENT_TIMESTAMP"),
    ),
    indexes=(
        "CREATE INDEX IF NOT EXISTS idx_history_url ON history(url)",
        "CREATE INDEX IF NOT EXISTS idx_history_last_visit ON history(last_visit)",
    ),
)

# Migration order; folders before bookmarks for the foreign key
EXPECTED_TABLES: tuple[TableSpec, ...] = (
    PROFILE,
    SETTINGS,
    TABS,
    BOOKMARK_FOLDERS,
    BOOKMARKS,
    DOWNLOADS,
    HISTORY,
)


def get_table_spec(name: str) -> TableSpec | None:
    for spec in EXPECTED_TABLES:
        if spec.name == name:
            return spec
    return None


__all__ = [
    "ColumnSpec",
    "RebuildRule",
    "TableSpec",
    "EXPECTED_TABLES",
    "get_table_spec",
]
