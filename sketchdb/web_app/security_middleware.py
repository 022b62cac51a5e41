"""
安全中间件
频率限制、请求大小检查、安全头部
"""
import logging
import time

from flask import Flask, request, jsonify, g
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

logger = logging.getLogger(__name__)


class SecurityMiddleware:
    """安全中间件类"""

    def __init__(self, app: Flask):
        self.app = app

        # 初始化频率限制器（RATELIMIT_ENABLED 为 False 时不生效）
        self.limiter = Limiter(
            get_remote_address,
            app=app,
            default_limits=[app.config.get('RATELIMIT_DEFAULT', '200 per hour')],
            storage_uri=app.config.get('RATELIMIT_STORAGE_URI', 'memory://')
        )

        self._register_middleware()

    def _register_middleware(self):
        """注册所有中间件"""

        @self.app.before_request
        def security_before_request():
            """请求前记录时间和客户端信息"""
            g.request_start_time = time.time()
            g.client_ip = request.environ.get('HTTP_X_FORWARDED_FOR', request.remote_addr)

        @self.app.after_request
        def security_after_request(response):
            """请求后安全处理"""
            self._add_security_headers(response)

            # 记录响应时间
            if hasattr(g, 'request_start_time'):
                response_time = time.time() - g.request_start_time
                if response_time > 5:  # 超过5秒的请求记录警告
                    logger.warning(f"慢请求: {request.endpoint} - {response_time:.2f}s")

            return response

        @self.app.errorhandler(429)
        def ratelimit_exceeded(e):
            logger.warning(f"请求过于频繁: {getattr(g, 'client_ip', request.remote_addr)} {request.path}")
            return jsonify({
                'success': False,
                'error': 'Too many requests',
                'details': [str(e.description)]
            }), 429

    def _add_security_headers(self, response):
        """添加安全HTTP头部"""
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        response.headers['Permissions-Policy'] = 'geolocation=(), microphone=(), camera=()'

        # HSTS (仅在HTTPS下)
        if request.is_secure:
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'

        # 移除服务器信息
        response.headers.pop('Server', None)

    def rate_limit(self, limits: str):
        """频率限制装饰器"""
        def decorator(f):
            return self.limiter.limit(limits)(f)
        return decorator
