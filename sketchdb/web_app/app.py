# -*- coding: utf-8 -*-
"""
SketchDB Web Application - Flask Backend + Socket.IO collaboration server
"""
import logging

from flask import Flask, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

from .api_routes import create_api_blueprint
from .app_config import get_config
from .collaboration import init_collaboration
from .diagram_store import DiagramStore
from .security_middleware import SecurityMiddleware
from .session_registry import SessionRegistry
from .token_service import TokenService
from .user_manager import UserManager

logger = logging.getLogger(__name__)


def create_app(config=None, user_manager=None, diagram_store=None, registry=None,
               token_service=None):
    """
    创建 Flask 应用并挂载 Socket.IO 协作服务

    未传入的协作依赖按配置创建（MySQL 存储、Fernet 令牌、内存注册表）。
    Socket.IO 实例保存在 ``app.socketio``。
    """
    config = config or get_config()
    if hasattr(config, 'validate'):
        config.validate()

    logging.basicConfig(
        level=getattr(logging, str(config.LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )

    app = Flask(__name__)
    app.config.update(config.to_flask_config())
    CORS(app, origins=[config.CLIENT_URL], supports_credentials=True)

    db_config = config.get_db_config()
    user_manager = user_manager or UserManager(db_config)
    diagram_store = diagram_store or DiagramStore(db_config)
    registry = registry or SessionRegistry.from_config(config)
    token_service = token_service or TokenService(config.SECRET_KEY, config.TOKEN_TTL_SECONDS)

    # 将依赖添加到应用上下文中
    app.user_manager = user_manager
    app.diagram_store = diagram_store
    app.registry = registry
    app.token_service = token_service

    security = SecurityMiddleware(app)
    app.security_middleware = security
    app.register_blueprint(create_api_blueprint(registry, security))

    @app.errorhandler(413)
    def request_too_large(e):
        return jsonify({'success': False, 'error': 'Request too large', 'details': []}), 413

    @app.errorhandler(500)
    def internal_error(e):
        app.logger.error(f"服务器内部错误: {e}")
        return jsonify({'success': False, 'error': 'Internal server error', 'details': []}), 500

    socketio = SocketIO(
        app,
        cors_allowed_origins=[config.CLIENT_URL],
        message_queue=config.REDIS_URL or None,
        async_mode='threading',
        ping_timeout=60,
        ping_interval=25,
    )
    app.socketio = socketio

    tasks = init_collaboration(socketio, registry, diagram_store, user_manager, token_service,
                               sweep_interval=config.SWEEP_INTERVAL_SECONDS)
    app.collab_tasks = tasks
    if config.ENABLE_BACKGROUND_TASKS:
        tasks.start()

    if config.REDIS_URL:
        logger.info("Socket.IO 使用 Redis 消息队列进行多进程广播")
    else:
        logger.info("未配置 REDIS_URL，协作服务以单进程模式运行")

    return app


if __name__ == '__main__':
    app = create_app()
    app.socketio.run(app, host='localhost', port=5000, debug=app.config.get('DEBUG', False),
                     use_reloader=False)
