# Gunicorn configuration file

# Worker class
worker_class = "uvicorn.workers.UvicornWorker"

# Monitor state (counters, blacklist, history) lives in process memory,
# so every worker would see a different picture. Keep a single process.
workers = 1

# The socket to bind to
bind = "0.0.0.0:8000"

# Log level
loglevel = "info"

# Log to stdout
accesslog = "-"
errorlog = "-"

# Let the lifespan drain the telemetry queue on shutdown
graceful_timeout = 15
