import os

bind = os.getenv("GUNICORN_BIND", "127.0.0.1:8000")
# Store listeners live in-process: websocket watchers only see writes made by the same worker.
workers = int(os.getenv("WEB_CONCURRENCY", "1"))
worker_class = "uvicorn.workers.UvicornWorker"
wsgi_app = "docere.main:app"
timeout = 60
graceful_timeout = 30
keepalive = 5
loglevel = os.getenv("LOG_LEVEL", "info").lower()
accesslog = "-"
errorlog = "-"
