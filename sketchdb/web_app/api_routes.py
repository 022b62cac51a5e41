"""
HTTP 接口路由
SQL 解析、SQL 生成、健康检查和协作统计
"""
import logging

from flask import Blueprint, request, jsonify, current_app

from sketchdb.src.er_model import Table, build_edges
from sketchdb.src.exceptions import SchemaValidationError, SQLGenerationError
from sketchdb.src.sql_generator import generate_sql, DIALECTS, EMPTY_EXPORT_MESSAGE
from sketchdb.src.sql_parser import parse_sql_with_warnings

logger = logging.getLogger(__name__)


def _error(message, details=None, status=400):
    return jsonify({'success': False, 'error': message, 'details': details or []}), status


def create_api_blueprint(registry, security=None):
    """创建 API 蓝图"""
    api_bp = Blueprint('api', __name__, url_prefix='/api')

    def limited(limits):
        if security is None:
            return lambda f: f
        return security.rate_limit(limits)

    @api_bp.route('/parse_sql', methods=['POST'])
    @limited('60 per minute')
    def parse_sql_api():
        """解析 SQL，返回画布节点、连线和警告"""
        data = request.get_json(silent=True) or {}
        sql = data.get('sql')
        if not isinstance(sql, str) or not sql.strip():
            return _error('SQL text is required')

        max_length = current_app.config.get('MAX_SQL_LENGTH', 200000)
        if len(sql) > max_length:
            return _error('SQL text is too large', [f"Limit is {max_length} characters"], 413)

        try:
            tables, warnings = parse_sql_with_warnings(sql)
        except Exception as e:
            current_app.logger.error(f"解析SQL失败: {e}")
            return _error('Failed to parse SQL', [str(e)], 500)

        current_app.logger.info(f"解析SQL完成: {len(tables)} 个表, {len(warnings)} 条警告")
        return jsonify({
            'success': True,
            'nodes': [table.to_node() for table in tables],
            'edges': [edge.to_dict() for edge in build_edges(tables)],
            'warnings': warnings,
        })

    @api_bp.route('/generate_sql', methods=['POST'])
    @limited('60 per minute')
    def generate_sql_api():
        """从画布节点生成 CREATE TABLE 语句"""
        data = request.get_json(silent=True) or {}
        nodes = data.get('nodes')
        if not isinstance(nodes, list):
            return _error('nodes must be a list')
        dialect = data.get('dialect') or None
        if dialect is not None and dialect not in DIALECTS:
            return _error('Unsupported SQL dialect', [f"Choose one of: {', '.join(DIALECTS)}"])

        tables = [Table.from_node(node) for node in nodes if isinstance(node, dict)]
        try:
            sql = generate_sql(tables, dialect)
        except SchemaValidationError as e:
            return _error('Schema validation failed', e.errors)
        except SQLGenerationError as e:
            return _error('SQL generation failed', e.errors)
        except Exception as e:
            current_app.logger.error(f"生成SQL失败: {e}")
            return _error('Failed to generate SQL', [str(e)], 500)

        return jsonify({
            'success': True,
            'sql': sql,
            'empty': sql == EMPTY_EXPORT_MESSAGE,
        })

    @api_bp.route('/health', methods=['GET'])
    def health():
        return jsonify({'status': 'ok', 'connections': len(registry.connections)})

    @api_bp.route('/collab/stats', methods=['GET'])
    def collab_stats():
        """协作服务统计（监控用）"""
        return jsonify(registry.stats())

    return api_bp
