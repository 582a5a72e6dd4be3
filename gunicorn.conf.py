"""Gunicorn configuration for the pricing API."""
import os

# Server socket
bind = os.environ.get('PRICING_BIND', '0.0.0.0:8080')

# Worker processes. Run the rate refresh via scripts/rate_sync_daemon.py
# (not PRICING_BACKGROUND_SYNC) when workers > 1.
workers = int(os.environ.get('PRICING_WORKERS', '2'))
worker_class = 'sync'
timeout = 30
keepalive = 2

# Application
wsgi_app = 'jewelry_pricing:create_app()'

# Logging
accesslog = '-'
errorlog = '-'
loglevel = 'info'

# Process naming
proc_name = 'jewelry-pricing'

# Server mechanics
daemon = False
pidfile = None
umask = 0
