"""
ER Model Classes - Represent tables, attributes, and the relationship edges derived from them
"""
import re
from typing import List, Optional, Dict, Any, Iterable


# Attribute kinds, using the values the canvas client sends over the wire
NORMAL = 'normal'
PRIMARY_KEY = 'PK'
FOREIGN_KEY = 'FK'
ATTRIBUTE_KINDS = (NORMAL, PRIMARY_KEY, FOREIGN_KEY)

DATA_TYPES = (
    'VARCHAR(255)',
    'CHAR(10)',
    'INTEGER',
    'BIGINT',
    'DECIMAL(10,2)',
    'FLOAT',
    'DOUBLE',
    'BOOLEAN',
    'DATE',
    'DATETIME',
    'TIMESTAMP',
    'TIME',
    'TEXT',
    'JSON',
    'BLOB',
)
DEFAULT_DATA_TYPE = 'VARCHAR(255)'

TABLE_COLORS = (
    '#3B82F6',  # Blue
    '#EF4444',  # Red
    '#10B981',  # Green
    '#F59E0B',  # Yellow
    '#8B5CF6',  # Purple
    '#06B6D4',  # Cyan
    '#F97316',  # Orange
    '#84CC16',  # Lime
    '#EC4899',  # Pink
    '#6366F1',  # Indigo
    '#14B8A6',  # Teal
    '#F472B6',  # Rose
    '#A855F7',  # Violet
    '#22C55E',  # Emerald
    '#FB7185',  # Red Rose
    '#60A5FA',  # Light Blue
)

EDGE_COLOR = '#0074D9'
MANY_TO_MANY_COLOR = '#FF6B6B'

# Relationship cardinality, with the short label drawn on the edge
ONE_TO_ONE = 'one-to-one'
ONE_TO_MANY = 'one-to-many'
MANY_TO_MANY = 'many-to-many'
CARDINALITY_LABELS = {
    ONE_TO_ONE: '1:1',
    ONE_TO_MANY: '1:N',
    MANY_TO_MANY: 'M:N',
}

# Referential actions for ON DELETE / ON UPDATE
NO_ACTION = 'NO ACTION'
CASCADE_ACTIONS = (NO_ACTION, 'CASCADE', 'SET NULL', 'SET DEFAULT', 'RESTRICT')


def normalize_table_name(name: str) -> str:
    """Whitespace runs become underscores, the form used in generated SQL"""
    return re.sub(r'\s+', '_', name)


def normalize_cascade_action(action: Optional[str]) -> Optional[str]:
    """'set  null' -> 'SET NULL'; unknown actions become None"""
    if not isinstance(action, str):
        return None
    action = ' '.join(action.upper().split())
    return action if action in CASCADE_ACTIONS else None


class Attribute:
    """Represents an attribute (column) of a table."""

    def __init__(self, name: str, data_type: str = DEFAULT_DATA_TYPE, kind: str = NORMAL,
                 is_not_null: bool = False, is_unique: bool = False,
                 is_auto_increment: bool = False, default_value: Optional[str] = None,
                 ref_table: Optional[str] = None, ref_attr: Optional[str] = None,
                 check_constraint: Optional[str] = None, cardinality: Optional[str] = None,
                 on_delete: Optional[str] = None, on_update: Optional[str] = None,
                 is_optional: bool = False, relationship_name: Optional[str] = None):
        self.name = name
        self.data_type = data_type
        self.kind = kind
        self.is_not_null = is_not_null
        self.is_unique = is_unique
        self.is_auto_increment = is_auto_increment
        self.default_value = default_value
        self.check_constraint = check_constraint
        self.ref_table = ref_table
        self.ref_attr = ref_attr
        # 以下只对外键有意义
        self.cardinality = cardinality
        self.on_delete = on_delete
        self.on_update = on_update
        self.is_optional = is_optional
        self.relationship_name = relationship_name

    @property
    def is_pk(self) -> bool:
        return self.kind == PRIMARY_KEY

    @property
    def is_fk(self) -> bool:
        return self.kind == FOREIGN_KEY

    @property
    def is_many_to_many(self) -> bool:
        return self.is_fk and self.cardinality == MANY_TO_MANY

    @property
    def not_null(self) -> bool:
        """Primary keys are implicitly NOT NULL; optional foreign keys never are"""
        if self.is_pk:
            return True
        if self.is_fk and self.is_optional:
            return False
        return self.is_not_null

    def set_reference(self, ref_table: str, ref_attr: str):
        self.kind = FOREIGN_KEY
        self.ref_table = ref_table
        self.ref_attr = ref_attr

    def clear_reference(self):
        """Demote a foreign key back to a plain column"""
        if self.kind == FOREIGN_KEY:
            self.kind = NORMAL
        self.ref_table = None
        self.ref_attr = None
        self.cardinality = None
        self.on_delete = None
        self.on_update = None
        self.is_optional = False
        self.relationship_name = None

    def references(self, table_name: str, attr_name: Optional[str] = None) -> bool:
        if not self.is_fk or not self.ref_table:
            return False
        if normalize_table_name(self.ref_table) != normalize_table_name(table_name):
            return False
        return attr_name is None or self.ref_attr == attr_name

    def copy(self) -> 'Attribute':
        return Attribute.from_dict(self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        """Converts the attribute to the client's dictionary shape."""
        data = {
            "name": self.name,
            "type": self.kind,
            "dataType": self.data_type,
            "isNotNull": self.is_not_null,
            "isUnique": self.is_unique,
            "isAutoIncrement": self.is_auto_increment,
        }
        if self.default_value is not None:
            data["defaultValue"] = self.default_value
        if self.check_constraint:
            data["checkConstraint"] = self.check_constraint
        if self.is_fk:
            data["refTable"] = self.ref_table
            data["refAttr"] = self.ref_attr
            # 可选的关系属性只在设置过时输出
            optional = {
                "cardinality": self.cardinality,
                "onDelete": self.on_delete,
                "onUpdate": self.on_update,
                "relationshipName": self.relationship_name,
            }
            data.update({key: value for key, value in optional.items() if value})
            if self.is_optional:
                data["isOptional"] = True
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Attribute':
        kind = data.get("type") or NORMAL
        if kind not in ATTRIBUTE_KINDS:
            kind = NORMAL
        is_fk = kind == FOREIGN_KEY
        cardinality = data.get("cardinality")
        return cls(
            name=data.get("name"),
            data_type=data.get("dataType") or DEFAULT_DATA_TYPE,
            kind=kind,
            is_not_null=bool(data.get("isNotNull", False)),
            is_unique=bool(data.get("isUnique", False)),
            is_auto_increment=bool(data.get("isAutoIncrement", False)),
            default_value=data.get("defaultValue") or None,
            check_constraint=data.get("checkConstraint") or None,
            ref_table=data.get("refTable") if is_fk else None,
            ref_attr=data.get("refAttr") if is_fk else None,
            cardinality=cardinality if is_fk and cardinality in CARDINALITY_LABELS else None,
            on_delete=normalize_cascade_action(data.get("onDelete")) if is_fk else None,
            on_update=normalize_cascade_action(data.get("onUpdate")) if is_fk else None,
            is_optional=bool(data.get("isOptional", False)) and is_fk,
            relationship_name=(data.get("relationshipName") or None) if is_fk else None,
        )

    def __eq__(self, other):
        if not isinstance(other, Attribute):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        kind_str = f" [{self.kind}]" if self.kind != NORMAL else ""
        ref_str = f" -> {self.ref_table}.{self.ref_attr}" if self.is_fk else ""
        return f"Attribute(name={self.name}{kind_str}, type={self.data_type}{ref_str})"


class Table:
    """Represents a table (canvas node) in the diagram"""

    def __init__(self, name: Optional[str], attributes: Optional[List[Attribute]] = None,
                 table_id: Optional[str] = None, position: Optional[Dict[str, float]] = None,
                 color: Optional[str] = None):
        self.id = table_id
        self.name = name
        self.attributes: List[Attribute] = list(attributes or [])
        self.position = dict(position or {'x': 0, 'y': 0})
        self.color = color

    @property
    def display_name(self) -> str:
        """Name used in SQL; falls back to a synthetic name when the label is absent"""
        if self.name is None:
            return f"Table_{self.id}"
        return self.name

    @property
    def normalized_name(self) -> str:
        return normalize_table_name(self.display_name.strip())

    def get_attribute(self, name: str, case_sensitive: bool = True) -> Optional[Attribute]:
        for attr in self.attributes:
            if attr.name == name:
                return attr
        if not case_sensitive and name:
            lowered = name.lower()
            for attr in self.attributes:
                if attr.name and attr.name.lower() == lowered:
                    return attr
        return None

    def add_attribute(self, attribute: Attribute):
        """Add an attribute to this table"""
        self.attributes.append(attribute)

    def copy(self) -> 'Table':
        return Table.from_node(self.to_node())

    def to_node(self) -> Dict[str, Any]:
        """Converts the table to a canvas node dictionary."""
        data = {
            "label": self.name,
            "attributes": [attr.to_dict() for attr in self.attributes],
        }
        if self.color:
            data["color"] = self.color
        return {
            "id": self.id,
            "type": "tableNode",
            "position": dict(self.position),
            "data": data,
        }

    @classmethod
    def from_node(cls, node: Dict[str, Any]) -> 'Table':
        data = node.get("data") or {}
        label = data.get("label")
        raw_attrs = data.get("attributes")
        attributes = [Attribute.from_dict(a) for a in raw_attrs if isinstance(a, dict)] \
            if isinstance(raw_attrs, list) else []
        return cls(
            name=label if isinstance(label, str) else None,
            attributes=attributes,
            table_id=node.get("id"),
            position=node.get("position"),
            color=data.get("color"),
        )

    def __repr__(self):
        return f"Table(name={self.name}, attributes={len(self.attributes)})"


class Edge:
    """A rendered relationship line, projected from a foreign-key attribute"""

    def __init__(self, source: str, source_attr: str, target: str, target_attr: str,
                 cardinality: Optional[str] = None, is_optional: bool = False):
        self.source = source
        self.source_attr = source_attr
        self.target = target
        self.target_attr = target_attr
        self.cardinality = cardinality
        self.is_optional = is_optional

    @property
    def id(self) -> str:
        return f"{self.source}-{self.source_attr}-to-{self.target}-{self.target_attr}"

    @property
    def source_handle(self) -> str:
        return f"{self.source}-{self.source_attr}-source"

    @property
    def target_handle(self) -> str:
        return f"{self.target}-{self.target_attr}-target"

    @property
    def label(self) -> str:
        return CARDINALITY_LABELS.get(self.cardinality, "FK Relationship")

    def to_dict(self) -> Dict[str, Any]:
        color = MANY_TO_MANY_COLOR if self.cardinality == MANY_TO_MANY else EDGE_COLOR
        style = {"stroke": color, "strokeWidth": 2}
        if self.is_optional:
            style["strokeDasharray"] = "5,5"
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "sourceHandle": self.source_handle,
            "targetHandle": self.target_handle,
            "label": self.label,
            "data": {"cardinality": self.cardinality, "isOptional": self.is_optional},
            "style": style,
            "markerEnd": {"type": "arrowclosed", "color": color},
        }

    def __eq__(self, other):
        if not isinstance(other, Edge):
            return NotImplemented
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)

    def __repr__(self):
        return f"Edge({self.source}.{self.source_attr} -> {self.target}.{self.target_attr})"


def find_table(tables: Iterable[Table], name: str) -> Optional[Table]:
    """Find a table by its normalized SQL name"""
    if not name:
        return None
    wanted = normalize_table_name(name.strip())
    for table in tables:
        if table.normalized_name == wanted:
            return table
    return None


def build_edges(tables: List[Table]) -> List[Edge]:
    """
    Project relationship edges from the foreign-key attributes.

    The attributes' refTable/refAttr fields are the only source of truth;
    references that do not resolve to an existing table and attribute
    produce no edge.
    """
    edges = []
    for table in tables:
        for attr in table.attributes:
            if not (attr.is_fk and attr.ref_table and attr.ref_attr):
                continue
            referenced = find_table(tables, attr.ref_table)
            if referenced is None or referenced.get_attribute(attr.ref_attr) is None:
                continue
            edges.append(Edge(referenced.id, attr.ref_attr, table.id, attr.name,
                              attr.cardinality, attr.is_optional))
    return edges


class Diagram:
    """Ordered tables plus viewport; edges are always derived"""

    def __init__(self, tables: Optional[List[Table]] = None,
                 viewport: Optional[Dict[str, float]] = None):
        self.tables: List[Table] = list(tables or [])
        self.viewport = dict(viewport or {'x': 0, 'y': 0, 'zoom': 1})

    @property
    def edges(self) -> List[Edge]:
        return build_edges(self.tables)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [table.to_node() for table in self.tables],
            "edges": [edge.to_dict() for edge in self.edges],
            "viewport": dict(self.viewport),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Diagram':
        nodes = data.get("nodes") or []
        return cls(
            tables=[Table.from_node(node) for node in nodes if isinstance(node, dict)],
            viewport=data.get("viewport"),
        )
