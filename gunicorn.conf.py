# Gunicorn configuration for ReviewDesk
# Request timeouts sit above the platform fetch timeout plus notification retries

# Worker settings
workers = 2
worker_class = 'sync'

# Timeout settings
timeout = 120
graceful_timeout = 60
keepalive = 5

# Logging
accesslog = '-'
errorlog = '-'
loglevel = 'info'

# Request handling
max_requests = 1000  # Restart workers after 1000 requests to prevent memory leaks
max_requests_jitter = 50  # Random jitter to prevent all workers restarting at once

# Bind
bind = '0.0.0.0:5000'

# Load the app once in the master; with ENABLE_SCHEDULER=1 the sync job runs there
preload_app = True


def on_exit(server):
    from reviewdesk.services.scheduler_service import shutdown_scheduler
    shutdown_scheduler()
