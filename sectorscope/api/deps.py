"""Shared collaborators for request handlers."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from sectorscope.jobs.queues import QueueBackend, QueueSet
from sectorscope.pipeline.triggers import PipelineTriggers
from sectorscope.repositories.analysis_orm import AnalysisRepository
from sectorscope.repositories.job_status_orm import JobStatusTracker
from sectorscope.streaming import PollingChangeFeed, UpdateStreamPublisher


@dataclass
class ApiServices:
    repository: AnalysisRepository
    tracker: JobStatusTracker
    triggers: PipelineTriggers
    publisher: UpdateStreamPublisher


def build_services(
    backend: QueueBackend | None = None,
    *,
    repository: AnalysisRepository | None = None,
    tracker: JobStatusTracker | None = None,
    publisher: UpdateStreamPublisher | None = None,
) -> ApiServices:
    """Default wiring: ORM repositories and Celery as the queue backend."""
    if backend is None:
        from sectorscope.celery_app import celery_app
        from sectorscope.jobs.dispatch import CeleryQueueBackend

        backend = CeleryQueueBackend(celery_app)

    repository = repository or AnalysisRepository()
    tracker = tracker or JobStatusTracker()
    queues = QueueSet(tracker, backend)
    publisher = publisher or UpdateStreamPublisher(PollingChangeFeed(tracker, repository))
    return ApiServices(
        repository=repository,
        tracker=tracker,
        triggers=PipelineTriggers(repository, queues),
        publisher=publisher,
    )


def get_services(request: Request) -> ApiServices:
    return request.app.state.services


def get_repository(request: Request) -> AnalysisRepository:
    return get_services(request).repository


def get_tracker(request: Request) -> JobStatusTracker:
    return get_services(request).tracker


def get_triggers(request: Request) -> PipelineTriggers:
    return get_services(request).triggers


def get_publisher(request: Request) -> UpdateStreamPublisher:
    return get_services(request).publisher
