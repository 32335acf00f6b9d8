# Gunicorn configuration for the Wozap connections service
import os

# Server socket
bind = os.environ.get("GUNICORN_BIND", "127.0.0.1:58741")
backlog = 2048

# Worker processes
# Instance pollers and status observers live in process memory, so a single
# worker serves every dashboard session; threads handle concurrency.
workers = 1
worker_class = "gthread"
threads = int(os.environ.get("GUNICORN_THREADS", "8"))
timeout = 120
keepalive = 2

# Logging
accesslog = "-"
errorlog = "-"
loglevel = "info"
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Process naming
proc_name = 'wozap-connections'

# Server mechanics
daemon = False
pidfile = '/tmp/wozap-connections.pid'
user = None
group = None
tmp_upload_dir = None

worker_tmp_dir = "/dev/shm"

# Graceful timeout for worker shutdown
graceful_timeout = 30

# Environment variables
raw_env = [
    'DJANGO_SETTINGS_MODULE=base.settings',
]

def when_ready(server):
    server.log.info("Wozap connections server is ready. Threads: %s", server.cfg.threads)

def worker_int(worker):
    worker.log.info("worker received INT or QUIT signal")
    from connections.poller import reconciliation_poller
    reconciliation_poller.stop_all()

def post_fork(server, worker):
    server.log.info("Worker spawned (pid: %s)", worker.pid)

def worker_abort(worker):
    worker.log.info("worker received SIGABRT signal")
