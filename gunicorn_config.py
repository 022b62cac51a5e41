"""
Gunicorn配置文件
Socket.IO 房间状态保存在进程内存中，单进程多线程运行；
多进程/多机部署需要配置 REDIS_URL 作为消息队列
"""
import os

# 服务器socket
bind = os.getenv('BIND', "0.0.0.0:5001")
backlog = 2048

# 工作进程
workers = 1
worker_class = "gthread"
threads = int(os.getenv('GUNICORN_THREADS', '100'))
timeout = 120
keepalive = 2

# 不预加载应用，后台任务在工作进程中启动
preload_app = False

# 日志
log_dir = os.getenv('LOG_DIR', 'logs')
os.makedirs(log_dir, exist_ok=True)
accesslog = os.path.join(log_dir, "gunicorn_access.log")
errorlog = os.path.join(log_dir, "gunicorn_error.log")
loglevel = os.getenv('LOG_LEVEL', 'info').lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s"'

# 进程命名
proc_name = "sketchdb_app"

daemon = False
pidfile = os.path.join(log_dir, "gunicorn.pid")
