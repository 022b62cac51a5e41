"""
SketchDB core - SQL <-> ER diagram translation
"""
from .sql_parser import parse_sql, parse_sql_with_warnings
from .sql_generator import generate_sql, validate_tables, EMPTY_EXPORT_MESSAGE

from .er_model import Attribute, Table, Edge, Diagram, build_edges
from .table_manager import TableManager, parse_connection_handles

__all__ = [
    'parse_sql',
    'parse_sql_with_warnings',
    'generate_sql',
    'validate_tables',
    'EMPTY_EXPORT_MESSAGE',
    'Attribute',
    'Table',
    'Edge',
    'Diagram',
    'build_edges',
    'TableManager',
    'parse_connection_handles',
]
