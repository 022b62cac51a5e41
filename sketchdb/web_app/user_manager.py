"""
用户管理模块
为协作服务提供用户身份查询
"""
import logging

import pymysql

logger = logging.getLogger(__name__)


class UserManager:
    def __init__(self, db_config):
        """初始化用户管理器"""
        self.db_config = db_config

    def get_db_connection(self):
        """获取数据库连接"""
        connection_params = {
            'host': self.db_config['host'],
            'user': self.db_config['user'],
            'password': self.db_config['password'],
            'database': self.db_config['database'],
            'charset': 'utf8mb4',
            'use_unicode': True,
            'autocommit': True,
            'cursorclass': pymysql.cursors.DictCursor
        }

        return pymysql.connect(**connection_params)

    def get_user(self, user_id):
        """
        按 ID 获取用户

        Returns:
            {'id', 'username', 'email', 'is_verified'}，查询失败或不存在时为 None
        """
        conn = None
        try:
            conn = self.get_db_connection()
            with conn.cursor() as cursor:
                cursor.execute(
                    "SELECT id, username, email, is_verified FROM users WHERE id = %s",
                    (user_id,)
                )
                row = cursor.fetchone()
                if not row:
                    return None
                row['is_verified'] = bool(row.get('is_verified'))
                return row
        except Exception as e:
            logger.error(f"获取用户信息失败: {e}")
            return None
        finally:
            if conn:
                conn.close()
