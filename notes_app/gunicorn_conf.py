"""gunicorn configuration, driven by NOTES_SERVER_* environment variables."""

from notes_app.config import ServerSettings

_server = ServerSettings()

bind = _server.bind
workers = _server.workers
worker_class = "gthread"
threads = _server.threads
timeout = _server.timeout
keepalive = _server.keepalive

loglevel = _server.log_level
accesslog = "-"
errorlog = "-"

