"""
SQL schema parser: CREATE TABLE and ALTER TABLE ... ADD FOREIGN KEY to diagram tables

解析是尽力而为的：无法识别的语句和子句会被跳过，不会抛出异常。
"""
import logging
import re
from typing import List, Optional, Tuple

from .er_model import (
    Attribute,
    Table,
    NORMAL,
    PRIMARY_KEY,
    DEFAULT_DATA_TYPE,
    TABLE_COLORS,
    normalize_cascade_action,
)

logger = logging.getLogger(__name__)

# 初始画布布局：3 列网格
GRID_COLUMNS = 3
GRID_ORIGIN = 100
COLUMN_WIDTH = 300
ROW_HEIGHT = 200

_ID = r'[`"\[]?(\w+)[`"\]]?'
_QUALIFIED_ID = r'(?:[`"\[]?\w+[`"\]]?\.)?' + _ID
_CONSTRAINT_PREFIX = r'(?:CONSTRAINT\s+[`"\[]?\w+[`"\]]?\s+)?'

CREATE_TABLE_RE = re.compile(
    r'^CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?' + _QUALIFIED_ID + r'\s*\(',
    re.IGNORECASE,
)
ALTER_FK_RE = re.compile(
    r'^ALTER\s+TABLE\s+(?:ONLY\s+)?' + _QUALIFIED_ID + r'\s+ADD\s+' + _CONSTRAINT_PREFIX +
    r'FOREIGN\s+KEY\s*\(\s*' + _ID + r'\s*\)\s*REFERENCES\s+' + _QUALIFIED_ID +
    r'\s*\(\s*' + _ID + r'\s*\)',
    re.IGNORECASE,
)
FK_CLAUSE_RE = re.compile(
    r'^' + _CONSTRAINT_PREFIX + r'FOREIGN\s+KEY\s*\(([^)]*)\)\s*REFERENCES\s+' + _QUALIFIED_ID +
    r'\s*\(([^)]*)\)',
    re.IGNORECASE,
)
PK_CLAUSE_RE = re.compile(r'^' + _CONSTRAINT_PREFIX + r'PRIMARY\s+KEY\s*\(([^)]*)\)', re.IGNORECASE)
UNIQUE_CLAUSE_RE = re.compile(
    r'^' + _CONSTRAINT_PREFIX + r'UNIQUE(?:\s+(?:KEY|INDEX))?(?:\s+[`"\[]?\w+[`"\]]?)?\s*\(([^)]*)\)',
    re.IGNORECASE,
)
IGNORED_CLAUSE_RE = re.compile(
    r'^(?:' + _CONSTRAINT_PREFIX + r'CHECK\s*\('
    r'|(?:(?:FULLTEXT|SPATIAL)\s+)?(?:KEY|INDEX)\b(?:\s+[`"\[]?\w+[`"\]]?)?\s*\((?!\s*\d)'
    r'|CONSTRAINT\s)',
    re.IGNORECASE,
)
COLUMN_RE = re.compile(r'^' + _ID + r'\s+([A-Za-z_]\w*(?:\s*\([^)]*\))?)(.*)$', re.DOTALL)
INLINE_REFERENCES_RE = re.compile(
    r'\bREFERENCES\s+' + _QUALIFIED_ID + r'\s*\(\s*' + _ID + r'\s*\)',
    re.IGNORECASE,
)
STRING_LITERAL_RE = re.compile(r"'(?:[^']|'')*'")
REFERENTIAL_ACTION_RE = re.compile(
    r'\bON\s+(DELETE|UPDATE)\s+(CASCADE|RESTRICT|SET\s+NULL|SET\s+DEFAULT|NO\s+ACTION)\b',
    re.IGNORECASE,
)
COLUMN_CHECK_RE = re.compile(r'\bCHECK\s*\(', re.IGNORECASE)


class PendingForeignKey:
    """A foreign key seen during parsing, applied once every table is known"""

    def __init__(self, table: str, column: str, ref_table: str, ref_column: str,
                 on_delete: Optional[str] = None, on_update: Optional[str] = None):
        self.table = table
        self.column = column
        self.ref_table = ref_table
        self.ref_column = ref_column
        self.on_delete = on_delete
        self.on_update = on_update

    def __repr__(self):
        return f"PendingForeignKey({self.table}.{self.column} -> {self.ref_table}.{self.ref_column})"


class SchemaParser:
    """
    Best-effort parser for a pragmatic subset of SQL DDL.

    ``warnings`` collects every skipped statement, unrecognized clause and
    dropped foreign key from the last ``parse`` call.
    """

    def __init__(self):
        self.tables: List[Table] = []
        self.pending: List[PendingForeignKey] = []
        self.warnings: List[str] = []

    def parse(self, sql: str) -> List[Table]:
        self.tables = []
        self.pending = []
        self.warnings = []

        for statement in smart_split(clean_sql(sql or ''), ';'):
            upper_stmt = statement.upper()
            if re.match(r'CREATE\s+TABLE\b', upper_stmt):
                self._parse_create_table(statement)
            elif re.match(r'ALTER\s+TABLE\b', upper_stmt):
                self._parse_alter_table(statement)
            else:
                self._warn(f"Skipped unsupported statement: {_preview(statement)}")

        self._apply_foreign_keys()
        layout_tables(self.tables)
        return self.tables

    def _warn(self, message: str):
        logger.debug(message)
        self.warnings.append(message)

    def _parse_create_table(self, statement: str):
        name_match = CREATE_TABLE_RE.match(statement)
        if not name_match:
            self._warn(f"Skipped CREATE TABLE without a readable name: {_preview(statement)}")
            return

        table = Table(name_match.group(1))
        body = extract_parenthesized(statement, name_match.end() - 1)

        for clause in smart_split(body, ','):
            self._parse_clause(table, clause)

        self.tables.append(table)

    def _parse_clause(self, table: Table, clause: str):
        fk_match = FK_CLAUSE_RE.match(clause)
        if fk_match:
            columns = _split_identifiers(fk_match.group(1))
            ref_columns = _split_identifiers(fk_match.group(3))
            actions = extract_referential_actions(clause[fk_match.end():])
            for i, column in enumerate(columns):
                ref_column = ref_columns[i] if i < len(ref_columns) else column
                self.pending.append(PendingForeignKey(table.name, column, fk_match.group(2), ref_column,
                                                      *actions))
            return

        pk_match = PK_CLAUSE_RE.match(clause)
        if pk_match:
            for column in _split_identifiers(pk_match.group(1)):
                attr = table.get_attribute(column, case_sensitive=False)
                if attr:
                    attr.kind = PRIMARY_KEY
                else:
                    self._warn(f"PRIMARY KEY on unknown column {table.name}.{column}")
            return

        unique_match = UNIQUE_CLAUSE_RE.match(clause)
        if unique_match:
            columns = _split_identifiers(unique_match.group(1))
            # 组合唯一约束无法用列级 UNIQUE 表达
            if len(columns) == 1:
                attr = table.get_attribute(columns[0], case_sensitive=False)
                if attr:
                    attr.is_unique = True
            return

        if IGNORED_CLAUSE_RE.match(clause):
            return

        col_match = COLUMN_RE.match(clause)
        if not col_match:
            self._warn(f"Skipped unrecognized clause in table {table.name}: {_preview(clause)}")
            return

        table.add_attribute(self._parse_column(table, col_match.group(1), col_match.group(2),
                                               col_match.group(3)))

    def _parse_column(self, table: Table, name: str, raw_type: str, rest: str) -> Attribute:
        masked = mask_string_literals(rest)
        attr = Attribute(name, normalize_data_type(raw_type))

        check_match = COLUMN_CHECK_RE.search(masked)
        if check_match:
            open_pos = check_match.end() - 1
            expression = extract_parenthesized(rest, open_pos)
            attr.check_constraint = expression.strip() or None
            # 表达式里的 NOT NULL / UNIQUE 等不是列修饰符
            end = open_pos + len(expression) + 2
            masked = masked[:check_match.start()] + ' ' * (end - check_match.start()) + masked[end:]

        upper_rest = masked.upper()
        if re.search(r'\bPRIMARY\s+KEY\b', upper_rest):
            attr.kind = PRIMARY_KEY
        attr.is_not_null = bool(re.search(r'\bNOT\s+NULL\b', upper_rest))
        attr.is_unique = bool(re.search(r'\bUNIQUE\b', upper_rest))
        attr.is_auto_increment = bool(re.search(r'\b(?:IDENTITY|AUTO_?INCREMENT)\b', upper_rest))
        attr.default_value = extract_default(rest, masked)

        ref_match = INLINE_REFERENCES_RE.search(masked)
        if ref_match:
            actions = extract_referential_actions(masked[ref_match.end():])
            self.pending.append(PendingForeignKey(table.name, name, ref_match.group(1), ref_match.group(2),
                                                  *actions))

        return attr

    def _parse_alter_table(self, statement: str):
        fk_match = ALTER_FK_RE.match(statement)
        if not fk_match:
            self._warn(f"Skipped unsupported ALTER TABLE: {_preview(statement)}")
            return
        actions = extract_referential_actions(statement[fk_match.end():])
        self.pending.append(PendingForeignKey(*fk_match.group(1, 2, 3, 4), *actions))

    def _apply_foreign_keys(self):
        for fk in self.pending:
            table = _find_table_ci(self.tables, fk.table)
            referenced = _find_table_ci(self.tables, fk.ref_table)
            if table is None or referenced is None:
                missing = fk.table if table is None else fk.ref_table
                self._warn(f"Dropped foreign key {fk.table}.{fk.column} -> "
                           f"{fk.ref_table}.{fk.ref_column}: table '{missing}' not found")
                continue

            fk_attr = table.get_attribute(fk.column, case_sensitive=False)
            if fk_attr is None:
                self._warn(f"Dropped foreign key {fk.table}.{fk.column}: column not declared")
                continue

            ref_attr = referenced.get_attribute(fk.ref_column, case_sensitive=False)
            if ref_attr is None:
                self._warn(f"Foreign key {fk.table}.{fk.column} references unknown column "
                           f"{referenced.name}.{fk.ref_column}")
            fk_attr.set_reference(referenced.name, ref_attr.name if ref_attr else fk.ref_column)
            fk_attr.on_delete = fk.on_delete
            fk_attr.on_update = fk.on_update

            # 未标注的被引用列视为主键
            if ref_attr and ref_attr.kind == NORMAL:
                ref_attr.kind = PRIMARY_KEY


def parse_sql(sql: str) -> List[Table]:
    """Parse SQL text into tables; never raises on unrecognized input"""
    return SchemaParser().parse(sql)


def parse_sql_with_warnings(sql: str) -> Tuple[List[Table], List[str]]:
    """Same as ``parse_sql`` but also returns what was skipped or dropped"""
    parser = SchemaParser()
    tables = parser.parse(sql)
    return tables, parser.warnings


def clean_sql(sql: str) -> str:
    """移除注释并折叠空白（引号内的内容原样保留）"""
    out = []
    i = 0
    length = len(sql)
    quote_char = None

    while i < length:
        char = sql[i]
        if quote_char:
            out.append(char)
            if char == quote_char:
                quote_char = None
            i += 1
        elif char in ("'", '"', '`'):
            quote_char = char
            out.append(char)
            i += 1
        elif sql.startswith('--', i):
            end = sql.find('\n', i)
            i = length if end == -1 else end
        elif sql.startswith('/*', i):
            end = sql.find('*/', i + 2)
            i = length if end == -1 else end + 2
            if out and out[-1] != ' ':
                out.append(' ')
        elif char.isspace():
            if out and out[-1] != ' ':
                out.append(' ')
            i += 1
        else:
            out.append(char)
            i += 1

    return ''.join(out).strip()


def smart_split(content: str, separator: str = ',') -> List[str]:
    """智能分割 SQL 内容，考虑括号嵌套和引号"""
    parts = []
    current = ''
    depth = 0
    quote_char = None

    for char in content:
        if quote_char:
            if char == quote_char:
                quote_char = None
        elif char in ("'", '"', '`'):
            quote_char = char
        elif char == '(':
            depth += 1
        elif char == ')':
            depth = max(depth - 1, 0)
        elif char == separator and depth == 0:
            if current.strip():
                parts.append(current.strip())
            current = ''
            continue

        current += char

    if current.strip():
        parts.append(current.strip())

    return parts


def extract_parenthesized(text: str, open_pos: int) -> str:
    """Return the text inside the parenthesis opened at ``open_pos``.

    An unbalanced body runs to the end of the text.
    """
    depth = 0
    quote_char = None
    for i in range(open_pos, len(text)):
        char = text[i]
        if quote_char:
            if char == quote_char:
                quote_char = None
        elif char in ("'", '"', '`'):
            quote_char = char
        elif char == '(':
            depth += 1
        elif char == ')':
            depth -= 1
            if depth == 0:
                return text[open_pos + 1:i]
    return text[open_pos + 1:]


def mask_string_literals(text: str) -> str:
    """Blank out string literal contents, keeping offsets intact"""
    return STRING_LITERAL_RE.sub(lambda m: "'" + ' ' * (len(m.group()) - 2) + "'", text)


def extract_default(rest: str, masked: Optional[str] = None) -> Optional[str]:
    """提取默认值，原样保留（字符串、函数调用或括号表达式）"""
    if masked is None:
        masked = mask_string_literals(rest)
    match = re.search(r'\bDEFAULT\s+', masked, re.IGNORECASE)
    if not match:
        return None

    start = match.end()
    if start >= len(rest):
        return None

    first = rest[start]
    if first == "'":
        literal = STRING_LITERAL_RE.match(rest, start)
        return literal.group() if literal else rest[start:].strip()
    if first == '(':
        return '(' + extract_parenthesized(rest, start) + ')'

    token = re.match(r'[^\s,()]+', rest[start:])
    if not token:
        return None
    end = start + token.end()
    if end < len(rest) and rest[end] == '(':
        return rest[start:end] + '(' + extract_parenthesized(rest, end) + ')'
    return token.group()


def extract_referential_actions(text: str) -> Tuple[Optional[str], Optional[str]]:
    """ON DELETE / ON UPDATE actions following a REFERENCES clause"""
    actions = {}
    for event, action in REFERENTIAL_ACTION_RE.findall(text):
        actions[event.upper()] = normalize_cascade_action(action)
    return actions.get('DELETE'), actions.get('UPDATE')


def normalize_data_type(raw_type: str) -> str:
    """Map a raw SQL type onto the fixed data type list; unknown types become VARCHAR(255)"""
    normalized = re.sub(r'\s+', '', raw_type.upper())
    base = normalized.split('(', 1)[0]

    if 'VARCHAR' in base:
        return 'VARCHAR(255)'
    if base in ('CHAR', 'NCHAR', 'CHARACTER'):
        return 'CHAR(10)'
    if base in ('BIGINT', 'INT8', 'BIGSERIAL'):
        return 'BIGINT'
    if base in ('INT', 'INTEGER', 'INT4', 'SMALLINT', 'TINYINT', 'MEDIUMINT', 'SERIAL') \
            or 'INTEGER' in base:
        return 'INTEGER'
    if base in ('DECIMAL', 'NUMERIC', 'NUMBER', 'MONEY'):
        return 'DECIMAL(10,2)'
    if 'FLOAT' in base or base == 'REAL':
        return 'FLOAT'
    if 'DOUBLE' in base:
        return 'DOUBLE'
    if 'BOOL' in base or base == 'BIT':
        return 'BOOLEAN'
    if 'DATETIME' in base:
        return 'DATETIME'
    if 'TIMESTAMP' in base:
        return 'TIMESTAMP'
    if 'DATE' in base:
        return 'DATE'
    if 'TIME' in base:
        return 'TIME'
    if 'TEXT' in base or base == 'CLOB':
        return 'TEXT'
    if 'JSON' in base:
        return 'JSON'
    if 'BLOB' in base or base in ('BYTEA', 'BINARY', 'VARBINARY'):
        return 'BLOB'

    return DEFAULT_DATA_TYPE


def layout_tables(tables: List[Table]):
    """Place tables on a simple grid and give each a palette color"""
    for index, table in enumerate(tables):
        table.id = f"table-{index + 1}"
        table.position = {
            'x': GRID_ORIGIN + (index % GRID_COLUMNS) * COLUMN_WIDTH,
            'y': GRID_ORIGIN + (index // GRID_COLUMNS) * ROW_HEIGHT,
        }
        table.color = TABLE_COLORS[index % len(TABLE_COLORS)]


def _find_table_ci(tables: List[Table], name: str) -> Optional[Table]:
    lowered = name.lower()
    for table in tables:
        if table.name.lower() == lowered:
            return table
    return None


def _split_identifiers(column_list: str) -> List[str]:
    return [col.strip().strip('`"[]') for col in column_list.split(',') if col.strip()]


def _preview(text: str, limit: int = 60) -> str:
    return text if len(text) <= limit else text[:limit] + '...'
