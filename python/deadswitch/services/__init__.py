"""Business logic services.

Services are called by route handlers, Celery tasks and the scheduler, and
orchestrate database operations. Configuration is passed in explicitly.
"""
