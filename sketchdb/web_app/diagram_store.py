"""
图表存储模块
基于 MySQL 的图表读取/保存，以及协作权限计算
"""
import json
import logging

import pymysql

logger = logging.getLogger(__name__)

EDIT = 'edit'
VIEW = 'view'
PERMISSIONS = (VIEW, EDIT)


def resolve_permission(diagram, user_id):
    """
    计算用户对图表的权限

    所有者 -> edit；协作者 -> 其存储的权限；公开图表 -> view；否则 None（拒绝访问）
    """
    if str(diagram['owner_id']) == str(user_id):
        return EDIT
    collaborators = diagram.get('collaborators') or {}
    permission = collaborators.get(str(user_id))
    if permission:
        return permission if permission in PERMISSIONS else VIEW
    if diagram.get('is_public'):
        return VIEW
    return None


def _row_to_diagram(row, collaborator_rows=()):
    """把数据库行转换为图表字典"""
    content = row.get('content') or {}
    if isinstance(content, (bytes, str)):
        try:
            content = json.loads(content)
        except ValueError:
            logger.warning(f"图表 {row.get('id')} 内容不是有效的 JSON")
            content = {}

    return {
        'id': row['id'],
        'owner_id': row['owner_id'],
        'owner_username': row.get('owner_username'),
        'name': row.get('name') or '',
        'slug': row.get('slug'),
        'is_public': bool(row.get('is_public')),
        'content': {
            'nodes': content.get('nodes') or [],
            'edges': content.get('edges') or [],
            'viewport': content.get('viewport') or {'x': 0, 'y': 0, 'zoom': 1},
        },
        'collaborators': {
            str(c['user_id']): c.get('permission') or VIEW for c in collaborator_rows
        },
    }


class DiagramStore:
    """图表持久化（协作服务只读取元数据和权限）"""

    SELECT_DIAGRAM = """
        SELECT d.id, d.owner_id, u.username AS owner_username, d.name, d.slug,
               d.is_public, d.content
        FROM diagrams d
        JOIN users u ON u.id = d.owner_id
    """

    def __init__(self, db_config):
        self.db_config = db_config

    def get_db_connection(self):
        """获取数据库连接"""
        return pymysql.connect(**self.db_config, cursorclass=pymysql.cursors.DictCursor)

    def _load(self, where, value):
        conn = None
        try:
            conn = self.get_db_connection()
            with conn.cursor() as cursor:
                cursor.execute(self.SELECT_DIAGRAM + where, (value,))
                row = cursor.fetchone()
                if not row:
                    return None
                cursor.execute(
                    "SELECT user_id, permission FROM diagram_collaborators WHERE diagram_id = %s",
                    (row['id'],)
                )
                return _row_to_diagram(row, cursor.fetchall())
        except Exception as e:
            logger.error(f"读取图表失败: {e}")
            return None
        finally:
            if conn:
                conn.close()

    def get_diagram(self, diagram_id):
        """按 ID 读取图表，不存在或读取失败时返回 None"""
        return self._load(" WHERE d.id = %s", diagram_id)

    def get_diagram_by_slug(self, slug):
        """按分享链接 slug 读取图表"""
        return self._load(" WHERE d.slug = %s", slug)

    def save_diagram(self, diagram_id, content):
        """
        保存图表内容（nodes/edges/viewport）

        Returns:
            bool: 是否更新成功
        """
        conn = None
        try:
            conn = self.get_db_connection()
            with conn.cursor() as cursor:
                affected = cursor.execute(
                    "UPDATE diagrams SET content = %s, updated_at = NOW() WHERE id = %s",
                    (json.dumps(content), diagram_id)
                )
            conn.commit()
            return affected > 0
        except Exception as e:
            logger.error(f"保存图表失败: {e}")
            if conn:
                conn.rollback()
            return False
        finally:
            if conn:
                conn.close()
