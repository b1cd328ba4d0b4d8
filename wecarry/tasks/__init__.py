"""
Background work: event listeners and the jobs they submit.
"""

from wecarry.tasks.listeners import register_jobs, register_listeners, unregister_listeners  # noqa: F401
from wecarry.tasks.notifications import JOBS  # noqa: F401
