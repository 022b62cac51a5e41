"""
WSGI入口文件
用于Gunicorn部署: gunicorn -c gunicorn_config.py wsgi:application
"""
import os

# 设置环境变量
os.environ.setdefault('FLASK_ENV', 'production')

from sketchdb.web_app.app import create_app

app = create_app()

if __name__ == "__main__":
    app.socketio.run(app, host='0.0.0.0', port=int(os.getenv('PORT', '5001')))
else:
    # 这是WSGI服务器调用的应用对象
    application = app
