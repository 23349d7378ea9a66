import os, multiprocessing

def cpu():
    return max(1, (os.cpu_count() or multiprocessing.cpu_count()))

# Workers
workers = int(os.getenv("WEB_WORKERS", str(min(max(2, cpu() * 2), 8))))

# Threads per worker; checkout blocks on the catalog service
worker_class = "gthread"
threads = int(os.getenv("WEB_THREADS", "4"))

# Timeouts
timeout = int(os.getenv("WEB_TIMEOUT", "60"))
graceful_timeout = int(os.getenv("WEB_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("WEB_KEEPALIVE", "5"))

# Recycle workers
preload_app = True
max_requests = int(os.getenv("WEB_MAX_REQUESTS", "2000"))
max_requests_jitter = int(os.getenv("WEB_MAX_REQUESTS_JITTER", "200"))

# Application logs go through Django's LOGGING (JSON); these are gunicorn's own
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("WEB_LOGLEVEL", "info")
