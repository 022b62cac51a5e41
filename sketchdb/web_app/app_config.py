# -*- coding: utf-8 -*-
"""
配置管理模块 - 从环境变量加载配置
"""
import os
from dotenv import load_dotenv

# 加载 .env 文件（如果存在）
load_dotenv()


def _env_int(name, default):
    return int(os.getenv(name, str(default)))


class Config:
    """基础配置类"""

    # Flask 配置
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    TESTING = False
    DEBUG = False
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # 数据库配置
    DB_HOST = os.getenv('DB_HOST', 'localhost')
    DB_USER = os.getenv('DB_USER', 'root')
    DB_PASSWORD = os.getenv('DB_PASSWORD', '')
    DB_NAME = os.getenv('DB_NAME', 'sketchdb')
    DB_CHARSET = os.getenv('DB_CHARSET', 'utf8mb4')

    @classmethod
    def get_db_config(cls):
        """获取数据库配置字典"""
        return {
            'host': cls.DB_HOST,
            'user': cls.DB_USER,
            'password': cls.DB_PASSWORD,
            'database': cls.DB_NAME,
            'charset': cls.DB_CHARSET
        }

    # 前端地址（CORS 来源）与可选的 Socket.IO 消息队列
    CLIENT_URL = os.getenv('CLIENT_URL', 'http://localhost:5173')
    REDIS_URL = os.getenv('REDIS_URL', '')

    # 访问令牌有效期（秒）
    TOKEN_TTL_SECONDS = _env_int('TOKEN_TTL_SECONDS', 7 * 24 * 3600)

    # 协作限制
    MAX_USERS_PER_DIAGRAM = _env_int('MAX_USERS_PER_DIAGRAM', 10)
    MAX_TOTAL_CONNECTIONS = _env_int('MAX_TOTAL_CONNECTIONS', 150)
    CURSOR_THROTTLE_MS = _env_int('CURSOR_THROTTLE_MS', 50)
    EVENT_RATE_LIMIT = _env_int('EVENT_RATE_LIMIT', 30)
    EVENT_RATE_WINDOW_MS = _env_int('EVENT_RATE_WINDOW_MS', 1000)
    SWEEP_INTERVAL_SECONDS = _env_int('SWEEP_INTERVAL_SECONDS', 30)
    RATE_STATE_TTL_SECONDS = _env_int('RATE_STATE_TTL_SECONDS', 60)
    ENABLE_BACKGROUND_TASKS = True

    # HTTP 接口限制
    MAX_SQL_LENGTH = _env_int('MAX_SQL_LENGTH', 200000)
    RATELIMIT_DEFAULT = os.getenv('RATELIMIT_DEFAULT', '200 per hour')
    RATELIMIT_STORAGE_URI = os.getenv('RATELIMIT_STORAGE_URI', 'memory://')

    @classmethod
    def get_collab_limits(cls):
        """获取协作限制配置字典"""
        return {
            'max_users_per_diagram': cls.MAX_USERS_PER_DIAGRAM,
            'max_total_connections': cls.MAX_TOTAL_CONNECTIONS,
            'cursor_throttle_ms': cls.CURSOR_THROTTLE_MS,
            'event_rate_limit': cls.EVENT_RATE_LIMIT,
            'event_rate_window_ms': cls.EVENT_RATE_WINDOW_MS,
            'rate_state_ttl_seconds': cls.RATE_STATE_TTL_SECONDS,
        }

    @classmethod
    def to_flask_config(cls):
        """导出为 Flask app.config 可用的映射（只包含大写键）"""
        return {key: getattr(cls, key) for key in dir(cls) if key.isupper()}


class DevelopmentConfig(Config):
    """开发环境配置"""
    DEBUG = True
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'DEBUG')


class ProductionConfig(Config):
    """生产环境配置"""
    DEBUG = False

    # 生产环境必须设置这些变量
    @classmethod
    def validate(cls):
        """验证生产环境必需的配置"""
        required = [
            ('SECRET_KEY', cls.SECRET_KEY, 'dev-secret-key-change-in-production'),
            ('DB_PASSWORD', cls.DB_PASSWORD, ''),
        ]

        missing = []
        for name, value, default in required:
            if not value or value == default:
                missing.append(name)

        if missing:
            raise ValueError(f"生产环境缺少必需的配置: {', '.join(missing)}")


class TestingConfig(Config):
    """测试环境配置"""
    TESTING = True
    SECRET_KEY = 'testing-secret-key'
    DB_NAME = os.getenv('TEST_DB_NAME', 'sketchdb_test')
    REDIS_URL = ''
    ENABLE_BACKGROUND_TASKS = False
    RATELIMIT_ENABLED = False
    MAX_SQL_LENGTH = 5000


# 根据环境变量选择配置
def get_config():
    """根据 FLASK_ENV 环境变量获取对应的配置类"""
    env = os.getenv('FLASK_ENV', 'development')

    config_map = {
        'development': DevelopmentConfig,
        'production': ProductionConfig,
        'testing': TestingConfig
    }

    return config_map.get(env, DevelopmentConfig)
