"""Application context assembly."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from qualiq.assistant.loader import load_profile
from qualiq.assistant.models import AssistantProfile
from qualiq.capa.workflow import CapaWorkflow
from qualiq.config import Settings, load_settings
from qualiq.gateway.client import AIGatewayClient
from qualiq.insights.analyzer import CapaPatternAnalyzer
from qualiq.persistence.blobs import LocalBlobStore
from qualiq.persistence.sqlite import SqliteTableStore
from qualiq.simulation.simulator import AuditSimulator
from qualiq.training.exam import TrainingExamService


@dataclass
class AppContext:
    """Application-wide dependency container.

    Initialized once at startup and cached for the lifetime of the process.
    """

    settings: Settings
    store: SqliteTableStore
    blobs: LocalBlobStore
    workflow: CapaWorkflow
    profile: AssistantProfile
    gateway: AIGatewayClient
    analyzer: CapaPatternAnalyzer
    simulator: AuditSimulator
    training: TrainingExamService


def build_app_context(settings: Settings) -> AppContext:
    profile = load_profile(settings.assistant.profile_path)
    store = SqliteTableStore(
        settings.storage.sqlite_path,
        wal=settings.storage.sqlite_wal,
        capa_plan_trigger=settings.storage.capa_plan_trigger,
    )
    blobs = LocalBlobStore(settings.storage.blob_path)
    workflow = CapaWorkflow(store, blobs, bucket_id=settings.storage.attachments_bucket)
    gateway = AIGatewayClient(
        settings.gateway.base_url,
        settings.gateway.api_key,
        settings.gateway.model or profile.model,
        timeout=settings.gateway.timeout_seconds,
        error_copy=profile.errors.as_mapping(),
    )
    return AppContext(
        settings=settings,
        store=store,
        blobs=blobs,
        workflow=workflow,
        profile=profile,
        gateway=gateway,
        analyzer=CapaPatternAnalyzer(gateway, store, profile),
        simulator=AuditSimulator(gateway, store, profile),
        training=TrainingExamService(gateway, store, profile),
    )


@lru_cache(maxsize=1)
def get_app_context() -> AppContext:
    """Get or create the application context."""
    return build_app_context(load_settings())
