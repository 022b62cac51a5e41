"""
Table manager - owns the tables of the active diagram and keeps foreign keys consistent
"""
import logging
import random
import re
from collections import namedtuple
from typing import Dict, List, Optional, Tuple

from .er_model import (
    Attribute,
    Diagram,
    Edge,
    Table,
    ATTRIBUTE_KINDS,
    CARDINALITY_LABELS,
    DATA_TYPES,
    DEFAULT_DATA_TYPE,
    FOREIGN_KEY,
    NORMAL,
    PRIMARY_KEY,
    TABLE_COLORS,
    build_edges,
    find_table,
    normalize_cascade_action,
    normalize_table_name,
)
from .exceptions import DiagramEditError
from .sql_generator import generate_sql
from .sql_parser import parse_sql_with_warnings

logger = logging.getLogger(__name__)

ConnectionInfo = namedtuple('ConnectionInfo', 'source_table_id source_attr target_table_id target_attr')

SOURCE_HANDLE_RE = re.compile(r'^(.+)-(.+)-source$')
TARGET_HANDLE_RE = re.compile(r'^(.+)-(.+)-target$')
TABLE_ID_RE = re.compile(r'^table-(\d+)$')

RELATIONSHIP_OPTIONS = ('cardinality', 'on_delete', 'on_update', 'is_optional', 'relationship_name')


def parse_connection_handles(source_handle: Optional[str],
                             target_handle: Optional[str]) -> Optional[ConnectionInfo]:
    """Split ``<tableId>-<attr>-source`` / ``<tableId>-<attr>-target`` handle ids"""
    if not source_handle or not target_handle:
        return None
    source_match = SOURCE_HANDLE_RE.match(source_handle)
    target_match = TARGET_HANDLE_RE.match(target_handle)
    if not source_match or not target_match:
        return None
    return ConnectionInfo(source_match.group(1), source_match.group(2),
                          target_match.group(1), target_match.group(2))


class AttributeDraft:
    """In-flight edit of one attribute, committed by ``save_attribute_edit``"""

    def __init__(self, attribute: Attribute):
        self.name = attribute.name
        self.data_type = attribute.data_type
        self.kind = attribute.kind
        self.ref_table = attribute.ref_table
        self.ref_attr = attribute.ref_attr
        self.is_not_null = attribute.is_not_null
        self.is_unique = attribute.is_unique
        self.is_auto_increment = attribute.is_auto_increment
        self.default_value = attribute.default_value
        self.check_constraint = attribute.check_constraint
        for option in RELATIONSHIP_OPTIONS:
            setattr(self, option, getattr(attribute, option))

    def changes(self) -> Dict:
        return dict(vars(self))


class TableManager:
    """
    Canonical in-memory list of tables for one diagram.

    Relationships live only on the foreign-key attributes; ``edges`` is a
    projection recomputed on every read.
    """

    def __init__(self, tables: Optional[List[Table]] = None,
                 viewport: Optional[Dict[str, float]] = None):
        self.tables: List[Table] = list(tables or [])
        self.viewport = dict(viewport or {'x': 0, 'y': 0, 'zoom': 1})
        self.selected_table_id: Optional[str] = None
        self._drafts: Dict[Tuple[str, int], AttributeDraft] = {}

    # ------------------------------------------------------------------ lookup

    @property
    def edges(self) -> List[Edge]:
        return build_edges(self.tables)

    def get_table(self, table_id: str) -> Optional[Table]:
        for table in self.tables:
            if table.id == table_id:
                return table
        return None

    def find_table_by_name(self, name: str) -> Optional[Table]:
        """Exact normalized match first, then case-insensitive"""
        table = find_table(self.tables, name)
        if table is not None or not name:
            return table
        wanted = normalize_table_name(name.strip()).lower()
        for candidate in self.tables:
            if candidate.normalized_name.lower() == wanted:
                return candidate
        return None

    def _require_table(self, table_id: str) -> Table:
        table = self.get_table(table_id)
        if table is None:
            raise DiagramEditError(f"Table '{table_id}' not found")
        return table

    def _require_attribute(self, table: Table, attr_name: str) -> Attribute:
        attr = table.get_attribute(attr_name)
        if attr is None:
            raise DiagramEditError(f"Attribute '{attr_name}' not found in table '{table.display_name}'")
        return attr

    def available_reference_tables(self, table_id: str) -> List[Table]:
        """Tables a foreign key in ``table_id`` may point at"""
        return [table for table in self.tables if table.id != table_id]

    def reference_candidates(self, table_id: str) -> List[Attribute]:
        table = self._require_table(table_id)
        return [attr for attr in table.attributes if attr.kind in (PRIMARY_KEY, NORMAL)]

    # ------------------------------------------------------------------ tables

    def _next_table_number(self) -> int:
        numbers = [int(m.group(1)) for m in (TABLE_ID_RE.match(t.id or '') for t in self.tables) if m]
        return max(numbers + [len(self.tables)]) + 1

    def add_table(self, name: Optional[str] = None, color: Optional[str] = None) -> Table:
        number = self._next_table_number()
        offset = len(self.tables) * 50
        table = Table(
            name or f"Table {number}",
            table_id=f"table-{number}",
            position={'x': 100 + offset, 'y': 100 + offset},
            color=color or random.choice(TABLE_COLORS),
        )
        if self.find_table_by_name(table.name):
            raise DiagramEditError(f"A table named '{table.name}' already exists")
        self.tables.append(table)
        logger.debug(f"Added table {table.id} ({table.name})")
        return table

    def delete_table(self, table_id: str) -> Table:
        """Remove a table and detach every foreign key that referenced it"""
        table = self._require_table(table_id)
        self.tables.remove(table)
        for other in self.tables:
            for attr in other.attributes:
                if attr.references(table.normalized_name):
                    logger.debug(f"Detaching {other.display_name}.{attr.name} from deleted table")
                    attr.clear_reference()
        if self.selected_table_id == table_id:
            self.selected_table_id = None
        self._discard_drafts(table_id)
        return table

    def rename_table(self, table_id: str, new_name: str) -> Table:
        table = self._require_table(table_id)
        if not new_name or not new_name.strip():
            raise DiagramEditError('Table name cannot be empty')
        new_name = new_name.strip()

        clash = self.find_table_by_name(new_name)
        if clash is not None and clash is not table:
            raise DiagramEditError(f"A table named '{normalize_table_name(new_name)}' already exists")

        old_name = table.normalized_name
        table.name = new_name
        for other in self.tables:
            for attr in other.attributes:
                if attr.references(old_name):
                    attr.ref_table = table.normalized_name
        return table

    def change_table_color(self, table_id: str, color: str) -> Table:
        table = self._require_table(table_id)
        table.color = color
        return table

    def move_table(self, table_id: str, x: float, y: float) -> Table:
        table = self._require_table(table_id)
        table.position = {'x': x, 'y': y}
        return table

    # -------------------------------------------------------------- attributes

    def _check_reference(self, ref_table: Optional[str], ref_attr: Optional[str]) -> Tuple[Table, Attribute]:
        if not ref_table or not ref_attr:
            raise DiagramEditError(
                'Foreign key reference is incomplete. Please select both reference table and attribute.'
            )
        referenced = self.find_table_by_name(ref_table)
        if referenced is None:
            raise DiagramEditError(f'Referenced table "{ref_table}" not found')
        target = referenced.get_attribute(ref_attr)
        if target is None:
            raise DiagramEditError(f'Referenced attribute "{ref_attr}" not found in table "{ref_table}"')
        return referenced, target

    @staticmethod
    def _check_kind_and_type(kind: str, data_type: str):
        if kind not in ATTRIBUTE_KINDS:
            raise DiagramEditError(f"Unknown attribute kind '{kind}'")
        if data_type not in DATA_TYPES:
            raise DiagramEditError(f"Unsupported data type '{data_type}'")

    @staticmethod
    def _check_relationship_options(options: Dict) -> Dict:
        """Validate the foreign-key options present in ``options``"""
        checked = {}
        for key in RELATIONSHIP_OPTIONS:
            if key not in options:
                continue
            value = options[key]
            if key == 'cardinality':
                if value and value not in CARDINALITY_LABELS:
                    raise DiagramEditError(f"Unknown cardinality '{value}'")
                value = value or None
            elif key in ('on_delete', 'on_update'):
                action = normalize_cascade_action(value)
                if value and action is None:
                    raise DiagramEditError(f"Unknown referential action '{value}'")
                value = action
            elif key == 'is_optional':
                value = bool(value)
            else:
                value = value or None
            checked[key] = value
        return checked

    @staticmethod
    def _apply_relationship_options(attr: Attribute, options: Dict):
        if attr.is_fk:
            for key, value in options.items():
                setattr(attr, key, value)

    def add_attribute(self, table_id: str, name: str, data_type: str = DEFAULT_DATA_TYPE,
                      kind: str = NORMAL, ref_table: Optional[str] = None,
                      ref_attr: Optional[str] = None, **flags) -> Attribute:
        table = self._require_table(table_id)
        if not name or not name.strip():
            raise DiagramEditError('Attribute name cannot be empty')
        name = name.strip()
        if table.get_attribute(name, case_sensitive=False):
            raise DiagramEditError(f"An attribute named '{name}' already exists in this table")
        self._check_kind_and_type(kind, data_type)
        options = self._check_relationship_options(flags)

        attr = Attribute(
            name,
            data_type,
            kind,
            is_not_null=flags.get('is_not_null', False),
            is_unique=flags.get('is_unique', False),
            is_auto_increment=flags.get('is_auto_increment', False),
            default_value=flags.get('default_value'),
            check_constraint=flags.get('check_constraint') or None,
        )
        if kind == FOREIGN_KEY:
            referenced, target = self._check_reference(ref_table, ref_attr)
            attr.set_reference(referenced.normalized_name, target.name)
            self._apply_relationship_options(attr, options)

        table.add_attribute(attr)
        self._discard_drafts(table_id)
        return attr

    def edit_attribute(self, table_id: str, attr_name: str, **changes) -> Attribute:
        """
        Apply changes to one attribute.

        Accepted keys: name, data_type, kind, ref_table, ref_attr,
        is_not_null, is_unique, is_auto_increment, default_value,
        check_constraint, and the foreign-key options cardinality, on_delete,
        on_update, is_optional and relationship_name.
        Leaving the foreign-key kind clears the reference; becoming a
        foreign key requires a resolvable reference.
        """
        table = self._require_table(table_id)
        attr = self._require_attribute(table, attr_name)

        new_name = (changes.get('name') or attr.name).strip()
        if new_name != attr.name:
            clash = table.get_attribute(new_name, case_sensitive=False)
            if clash is not None and clash is not attr:
                raise DiagramEditError(f"An attribute named '{new_name}' already exists in this table")

        kind = changes.get('kind') or attr.kind
        data_type = changes.get('data_type') or attr.data_type
        self._check_kind_and_type(kind, data_type)
        options = self._check_relationship_options(changes)

        reference = None
        if kind == FOREIGN_KEY:
            ref_table = changes.get('ref_table') or attr.ref_table
            ref_attr = changes.get('ref_attr') or attr.ref_attr
            reference = self._check_reference(ref_table, ref_attr)

        old_name = attr.name
        attr.name = new_name
        attr.data_type = data_type
        for flag in ('is_not_null', 'is_unique', 'is_auto_increment'):
            if flag in changes:
                setattr(attr, flag, bool(changes[flag]))
        if 'default_value' in changes:
            attr.default_value = changes['default_value'] or None
        if 'check_constraint' in changes:
            attr.check_constraint = changes['check_constraint'] or None

        if reference is not None:
            referenced, target = reference
            attr.set_reference(referenced.normalized_name, target.name)
            self._apply_relationship_options(attr, options)
        else:
            attr.clear_reference()
            attr.kind = kind

        if old_name != new_name:
            self._retarget_references(table, old_name, new_name)
        return attr

    def delete_attribute(self, table_id: str, attr_name: str) -> Attribute:
        """Remove an attribute; foreign keys pointing at it become plain columns"""
        table = self._require_table(table_id)
        attr = self._require_attribute(table, attr_name)
        table.attributes.remove(attr)

        for other in self.tables:
            for candidate in other.attributes:
                if candidate.references(table.normalized_name, attr.name):
                    logger.debug(f"Converting FK {other.display_name}.{candidate.name} back to normal")
                    candidate.clear_reference()
        self._discard_drafts(table_id)
        return attr

    def _retarget_references(self, table: Table, old_attr: str, new_attr: str):
        for other in self.tables:
            for candidate in other.attributes:
                if candidate.references(table.normalized_name, old_attr):
                    candidate.ref_attr = new_attr

    # ------------------------------------------------------------- edit drafts

    def start_attribute_edit(self, table_id: str, index: int) -> AttributeDraft:
        table = self._require_table(table_id)
        if not 0 <= index < len(table.attributes):
            raise DiagramEditError(f"No attribute at position {index}")
        draft = AttributeDraft(table.attributes[index])
        self._drafts[(table_id, index)] = draft
        return draft

    def get_attribute_draft(self, table_id: str, index: int) -> Optional[AttributeDraft]:
        return self._drafts.get((table_id, index))

    def save_attribute_edit(self, table_id: str, index: int) -> Attribute:
        draft = self._drafts.get((table_id, index))
        if draft is None:
            raise DiagramEditError('No attribute edit in progress')
        table = self._require_table(table_id)
        attr = self.edit_attribute(table_id, table.attributes[index].name, **draft.changes())
        self._drafts.pop((table_id, index), None)
        return attr

    def cancel_attribute_edit(self, table_id: str, index: int):
        self._drafts.pop((table_id, index), None)

    def _discard_drafts(self, table_id: str):
        for key in [key for key in self._drafts if key[0] == table_id]:
            del self._drafts[key]

    # ------------------------------------------------------------- connections

    def is_valid_connection(self, source_table_id: str, target_table_id: str,
                            source_handle: Optional[str], target_handle: Optional[str]) -> bool:
        if source_table_id == target_table_id:
            return False
        info = parse_connection_handles(source_handle, target_handle)
        if info is None:
            return False
        return info.source_table_id == source_table_id and info.target_table_id == target_table_id

    def connect(self, source_table_id: str, target_table_id: str,
                source_handle: str, target_handle: str, **options) -> Attribute:
        """
        Record a user-drawn connection as a foreign key.

        The target attribute becomes a foreign key onto the source
        attribute, and an unannotated source attribute is promoted to
        primary key. ``options`` are the foreign-key options accepted by
        ``edit_attribute``.
        """
        if not self.is_valid_connection(source_table_id, target_table_id, source_handle, target_handle):
            raise DiagramEditError('Invalid connection')
        options = self._check_relationship_options(options)
        info = parse_connection_handles(source_handle, target_handle)

        source = self._require_table(info.source_table_id)
        target = self._require_table(info.target_table_id)
        source_attr = self._require_attribute(source, info.source_attr)
        target_attr = self._require_attribute(target, info.target_attr)

        if source_attr.kind == NORMAL:
            source_attr.kind = PRIMARY_KEY
        target_attr.set_reference(source.normalized_name, source_attr.name)
        self._apply_relationship_options(target_attr, options)
        return target_attr

    # ------------------------------------------------------------ import/export

    def import_tables(self, tables: List[Table]):
        """Swap the whole table set at once; in-flight edits are dropped"""
        self.tables = list(tables)
        self.selected_table_id = None
        self._drafts = {}

    def import_sql(self, sql: str) -> List[str]:
        tables, warnings = parse_sql_with_warnings(sql)
        self.import_tables(tables)
        logger.info(f"Imported {len(tables)} table(s) from SQL")
        return warnings

    def to_sql(self) -> str:
        return generate_sql(self.tables)

    def to_diagram(self) -> Diagram:
        return Diagram(self.tables, self.viewport)

    @classmethod
    def from_diagram(cls, diagram: Diagram) -> 'TableManager':
        return cls(diagram.tables, diagram.viewport)
