"""Gunicorn configuration for the Syllabind generation service.

Usage:
    gunicorn main:app -c deploy/gunicorn.conf.py

This service holds long-lived WebSockets: one full generation makes
12-20 LLM calls with web search and can run for several minutes,
including rate-limit countdowns of up to 120s.
"""

import multiprocessing
import os

# ─── Server socket ──────────────────────────────────────────────

bind = os.getenv("BIND", "0.0.0.0:5000")
backlog = 2048

# ─── Worker processes ───────────────────────────────────────────
#
# Async workers: 1 per core.  The request window and LLM semaphore are
# per worker, so the effective provider budget is workers × LLM_REQUESTS_PER_MINUTE.
# Keep WORKERS × limit under the provider tier.

workers = int(os.getenv("WORKERS", min(multiprocessing.cpu_count(), 2)))
worker_class = "uvicorn.workers.UvicornWorker"

# ─── Timeouts ───────────────────────────────────────────────────
#
# A generation socket is active for minutes; the worker heartbeat is
# independent of socket activity, so this only guards hung workers.

timeout = 300
graceful_timeout = 120  # Let in-flight generations reach a checkpoint
keepalive = 75

# ─── Worker recycling ──────────────────────────────────────────
#
# Recycling kills open sockets; keep it rare.

max_requests = 5000
max_requests_jitter = 500

# ─── Logging ────────────────────────────────────────────────────

accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info")

# ─── Process naming ─────────────────────────────────────────────

proc_name = "syllabind-generator"

# ─── Server hooks ───────────────────────────────────────────────


def on_starting(server):
    """Called just before the master process is initialized."""
    server.log.info(
        "Starting Syllabind generator — workers=%d, timeout=%ds, bind=%s",
        workers,
        timeout,
        bind,
    )


def worker_exit(server, worker):
    server.log.info("Worker exit (pid: %s)", worker.pid)
