"""
Service wiring. Builds every long-lived component once from configuration;
the dashboard and the CLI receive the bundle instead of reaching for
module-level singletons.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from archive_client import ArchiveClient
from config.settings import ScribeConfig, config
from memory.ledger import ProcessingLedger
from orchestrator.chat_service import ChatService
from orchestrator.pipeline import IntakePipeline
from orchestrator.reconciler import Reconciler
from providers.base import AIProvider
from providers.factory import create_provider
from triggers.scheduler import ScanScheduler

logger = logging.getLogger("scribe.services")


@dataclass
class ServiceBundle:
    archive: ArchiveClient
    ledger: ProcessingLedger
    provider: AIProvider
    pipeline: IntakePipeline
    chat: ChatService
    scheduler: Optional[ScanScheduler] = None

    def start_background(self):
        """Start the webhook consumer and the scan scheduler (inside the event loop)."""
        self.pipeline.start()
        if self.scheduler is not None:
            self.scheduler.start()

    async def close(self):
        if self.scheduler is not None:
            self.scheduler.stop()
        await self.pipeline.stop()
        await self.chat.close()
        await self.archive.close()
        await self.provider.close()
        self.ledger.close()


def build_services(cfg: ScribeConfig = config) -> ServiceBundle:
    """
    Validate configuration and construct the service graph.
    Raises ConfigurationError when required settings are missing.
    """
    cfg.validate()
    archive = ArchiveClient(cfg.archive)
    ledger = ProcessingLedger(cfg.postgres)
    provider = create_provider(cfg)
    reconciler = Reconciler(archive, ledger, cfg.features)
    pipeline = IntakePipeline(archive, ledger, provider, reconciler, cfg.scan)
    chat = ChatService(archive, cfg.ai, cfg.chat)
    scheduler = ScanScheduler(pipeline, cfg.scan)
    logger.info(f"Services built (provider={provider.name}, model={provider.model})")
    return ServiceBundle(
        archive=archive,
        ledger=ledger,
        provider=provider,
        pipeline=pipeline,
        chat=chat,
        scheduler=scheduler,
    )
