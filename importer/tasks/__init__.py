"""
Celery tasks for archive imports.

``imports`` runs the pipeline for an ImportJob and re-queues itself while the
import is suspended; ``housekeeping`` removes session state which is no
longer needed.
"""
