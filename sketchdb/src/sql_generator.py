"""
SQL generator: diagram tables to CREATE TABLE statements

All-or-nothing: validation problems and per-table failures are collected
and raised together, never returned as a partial schema.
"""
import logging
from typing import List, Optional

from .er_model import Attribute, Table, DEFAULT_DATA_TYPE, NO_ACTION, find_table, normalize_table_name
from .exceptions import SchemaValidationError, SQLGenerationError

logger = logging.getLogger(__name__)

EMPTY_EXPORT_MESSAGE = 'No tables to export!'

DIALECTS = ('mysql', 'postgresql', 'sqlite', 'sqlserver')

# 各方言的自增写法；postgresql 改用 SERIAL 类型，sqlite 依赖 INTEGER PRIMARY KEY
AUTO_INCREMENT_KEYWORDS = {
    'mysql': 'AUTO_INCREMENT',
    'sqlserver': 'IDENTITY(1,1)',
    'postgresql': None,
    'sqlite': None,
}
TYPE_MAPPINGS = {
    'postgresql': {'DATETIME': 'TIMESTAMP', 'BLOB': 'BYTEA', 'DOUBLE': 'DOUBLE PRECISION'},
    'sqlite': {'BOOLEAN': 'INTEGER'},
}
SERIAL_TYPES = {'INTEGER': 'SERIAL', 'BIGINT': 'BIGSERIAL'}


def validate_tables(tables: List[Table]) -> List[str]:
    """Return every schema problem found in ``tables`` (empty list when valid)"""
    errors = []
    table_names = set()

    for index, table in enumerate(tables):
        resolved = table.display_name
        if not isinstance(resolved, str) or not resolved.strip():
            errors.append(f"Node {index + 1}: Invalid or missing table name")

        # 名称为空时仍继续检查属性，报告里用合成名称指代该表
        table_name = table.normalized_name or f"Table_{table.id}"
        if table_name in table_names:
            errors.append(f"Duplicate table name: {table_name}")
        table_names.add(table_name)

        if not table.attributes:
            errors.append(f"Table {table_name}: No attributes defined")

        attribute_names = set()
        for attr_index, attr in enumerate(table.attributes):
            if not isinstance(attr.name, str) or not attr.name.strip():
                errors.append(f"Table {table_name}, attribute {attr_index + 1}: "
                              f"Invalid or missing attribute name")
            else:
                if attr.name in attribute_names:
                    errors.append(f"Table {table_name}: Duplicate attribute name '{attr.name}'")
                attribute_names.add(attr.name)

            if attr.is_fk:
                errors.extend(_validate_reference(tables, table_name, attr))

    return errors


def _validate_reference(tables: List[Table], table_name: str, attr) -> List[str]:
    if not attr.ref_table or not attr.ref_attr:
        return [f"Table {table_name}, attribute {attr.name}: Foreign key missing reference information"]

    referenced = find_table(tables, attr.ref_table)
    if referenced is None:
        return [f"Table {table_name}, attribute {attr.name}: "
                f"References non-existent table '{attr.ref_table}'"]

    if referenced.get_attribute(attr.ref_attr) is None:
        return [f"Table {table_name}, attribute {attr.name}: "
                f"References non-existent attribute '{attr.ref_table}.{attr.ref_attr}'"]
    return []


def generate_sql(tables: List[Table], dialect: Optional[str] = None) -> str:
    """
    Generate CREATE TABLE statements for the given tables.

    Args:
        tables: Ordered tables of the diagram
        dialect: One of ``DIALECTS`` to adapt types, auto-increment and
            special defaults; None keeps the portable default output

    Returns:
        The statements separated by blank lines, junction tables for
        many-to-many relationships last, or a notice when there is
        nothing to export

    Raises:
        SchemaValidationError: with every violation found
        SQLGenerationError: with every table that failed to render
    """
    if tables is None:
        raise ValueError('Invalid input: tables are required')
    if dialect is not None and dialect not in DIALECTS:
        raise ValueError(f"Unsupported dialect '{dialect}'")

    if len(tables) == 0:
        return EMPTY_EXPORT_MESSAGE

    errors = validate_tables(tables)
    if errors:
        logger.info(f"Schema validation failed with {len(errors)} problem(s)")
        raise SchemaValidationError(errors)

    statements = []
    generation_errors = []
    for table in tables:
        try:
            statements.append(generate_table_sql(table, tables, dialect))
        except Exception as e:
            logger.exception(f"Failed to generate SQL for table {table.display_name}")
            generation_errors.append(f"Failed to generate SQL for table {table.display_name}: {e}")

    if generation_errors:
        raise SQLGenerationError(generation_errors)

    statements.extend(generate_junction_sql(rel, dialect) for rel in many_to_many_relationships(tables))
    return '\n\n'.join(statements).strip()


def generate_table_sql(table: Table, tables: List[Table], dialect: Optional[str] = None) -> str:
    """Render a single CREATE TABLE statement"""
    table_name = table.normalized_name
    lines = [f"  {column_definition(attr, dialect)}" for attr in table.attributes]

    for attr in table.attributes:
        # 多对多关系由中间表表达
        if attr.is_fk and attr.ref_table and attr.ref_attr and not attr.is_many_to_many:
            referenced = find_table(tables, attr.ref_table)
            ref_name = referenced.normalized_name if referenced else normalize_table_name(attr.ref_table)
            line = f"  FOREIGN KEY ({attr.name}) REFERENCES {ref_name}({attr.ref_attr})"
            lines.append(line + referential_actions(attr.on_delete, attr.on_update))

    return f"CREATE TABLE {table_name} (\n" + ",\n".join(lines) + "\n);"


def referential_actions(on_delete: Optional[str], on_update: Optional[str]) -> str:
    """' ON DELETE ... ON UPDATE ...'; NO ACTION is the default and is left out"""
    clause = ''
    if on_delete and on_delete != NO_ACTION:
        clause += f" ON DELETE {on_delete}"
    if on_update and on_update != NO_ACTION:
        clause += f" ON UPDATE {on_update}"
    return clause


def column_definition(attr, dialect: Optional[str] = None) -> str:
    """Column clause with modifiers in a fixed order for diffable output"""
    parts = [attr.name, column_type(attr, dialect)]
    if attr.is_auto_increment:
        keyword = AUTO_INCREMENT_KEYWORDS.get(dialect, 'IDENTITY(1,1)')
        if keyword:
            parts.append(keyword)
    if attr.not_null:
        parts.append('NOT NULL')
    # 主键本身唯一，不重复输出 UNIQUE
    if attr.is_unique and not attr.is_pk:
        parts.append('UNIQUE')
    if attr.default_value:
        parts.append(f"DEFAULT {column_default(attr.default_value, dialect)}")
    if attr.check_constraint:
        parts.append(f"CHECK ({attr.check_constraint})")
    if attr.is_pk:
        parts.append('PRIMARY KEY')
    return ' '.join(parts)


def column_type(attr, dialect: Optional[str] = None) -> str:
    data_type = attr.data_type or DEFAULT_DATA_TYPE
    if dialect == 'postgresql' and attr.is_auto_increment and data_type in SERIAL_TYPES:
        return SERIAL_TYPES[data_type]
    if dialect == 'sqlite' and data_type.startswith('VARCHAR'):
        return 'TEXT'
    return TYPE_MAPPINGS.get(dialect, {}).get(data_type, data_type)


def column_default(value: str, dialect: Optional[str] = None) -> str:
    if dialect is None:
        return value
    upper = value.upper()
    if upper in ('NOW()', 'CURRENT_TIMESTAMP'):
        return 'NOW()' if dialect == 'postgresql' else 'CURRENT_TIMESTAMP'
    if upper in ('UUID()', 'GEN_RANDOM_UUID()'):
        return 'gen_random_uuid()' if dialect == 'postgresql' else '(UUID())'
    return value


class ManyToMany:
    """A many-to-many relationship, rendered as a junction table"""

    def __init__(self, table: Table, pk: Attribute, referenced: Table, ref_pk: Attribute,
                 on_delete: Optional[str] = None, on_update: Optional[str] = None):
        self.table = table
        self.pk = pk
        self.referenced = referenced
        self.ref_pk = ref_pk
        self.on_delete = on_delete
        self.on_update = on_update

    @property
    def name(self) -> str:
        first, second = sorted([self.table.normalized_name, self.referenced.normalized_name])
        return f"{first}_{second}"


def many_to_many_relationships(tables: List[Table]) -> List[ManyToMany]:
    """One relationship per table pair, in diagram order"""
    relationships = []
    seen = set()
    for table in tables:
        pk = next((a for a in table.attributes if a.is_pk), None)
        for attr in table.attributes:
            if not attr.is_many_to_many:
                continue
            referenced = find_table(tables, attr.ref_table)
            if referenced is None:
                continue
            ref_pk = next((a for a in referenced.attributes if a.is_pk), None)
            if pk is None or ref_pk is None:
                logger.warning(f"Skipping junction table for {table.display_name}.{attr.name}: "
                               f"both tables need a primary key")
                continue
            pair = frozenset([table.normalized_name, referenced.normalized_name])
            if pair in seen:
                continue
            seen.add(pair)
            relationships.append(ManyToMany(table, pk, referenced, ref_pk,
                                            attr.on_delete, attr.on_update))
    return relationships


def generate_junction_sql(rel: ManyToMany, dialect: Optional[str] = None) -> str:
    """CREATE TABLE for the junction of a many-to-many relationship"""
    left = f"{rel.table.normalized_name.lower()}_{rel.pk.name}"
    right = f"{rel.referenced.normalized_name.lower()}_{rel.ref_pk.name}"
    actions = referential_actions(rel.on_delete or 'CASCADE', rel.on_update or 'CASCADE')
    created_default = 'NOW()' if dialect == 'postgresql' else 'CURRENT_TIMESTAMP'
    lines = [
        f"  {left} {rel.pk.data_type or DEFAULT_DATA_TYPE} NOT NULL",
        f"  {right} {rel.ref_pk.data_type or DEFAULT_DATA_TYPE} NOT NULL",
        f"  created_at TIMESTAMP DEFAULT {created_default}",
        f"  PRIMARY KEY ({left}, {right})",
        f"  FOREIGN KEY ({left}) REFERENCES {rel.table.normalized_name}({rel.pk.name}){actions}",
        f"  FOREIGN KEY ({right}) REFERENCES {rel.referenced.normalized_name}({rel.ref_pk.name}){actions}",
    ]
    return f"CREATE TABLE {rel.name} (\n" + ",\n".join(lines) + "\n);"
