"""Pipeline job contracts, queues, stage workers and Celery tasks."""
