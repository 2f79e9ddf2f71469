import os

wsgi_app = "config.wsgi:application"
bind = os.getenv("BIND", "0.0.0.0:8000")

# Processes
workers = int(os.getenv("GUNI_WORKERS", str(min(max(2, (os.cpu_count() or 1) * 2), 8))))

# Threads per worker; notification delivery also runs on a small pool per worker
worker_class = "gthread"
threads = int(os.getenv("GTHREADS", "4"))

timeout = int(os.getenv("GUNI_TIMEOUT", "30"))
graceful_timeout = int(os.getenv("GUNI_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNI_KEEPALIVE", "5"))

# The notification thread pool must be created after fork
preload_app = False
max_requests = int(os.getenv("GUNI_MAX_REQUESTS", "2000"))
max_requests_jitter = int(os.getenv("GUNI_MAX_REQUESTS_JITTER", "200"))

accesslog = "-"
errorlog = "-"
loglevel = os.getenv("GUNI_LOGLEVEL", "info")
