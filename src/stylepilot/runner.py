from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence

from pilot_llm.client import gateway_from_env
from pilot_llm.gateway import ModelServiceGateway
from pilot_llm.middleware import LoggingGateway
from pilot_llm.types import ImageData
from stylepilot.config import PilotConfig
from stylepilot.document.base import Document
from stylepilot.engine.orchestrator import (
    DEFAULT_BLOCK_KEY,
    CancellationToken,
    RefinementOrchestrator,
    RefinementRequest,
)
from stylepilot.events.bus import EventBus
from stylepilot.events.types import ProgressEvent
from stylepilot.model.artifact import Artifact
from stylepilot.model.run import RefinementResult, RefinementRun
from stylepilot.store.db import Database
from stylepilot.store.migrations import run_migrations
from stylepilot.store.repositories import ArtifactRepository
from stylepilot.stylesheet import BlockKey, StyleDocument

logger = logging.getLogger(__name__)


class PilotRunner:
    """Wires the gateway, document, event bus and artifact store together."""

    def __init__(
        self,
        config: PilotConfig,
        gateway: ModelServiceGateway | None = None,
        document: Document | None = None,
        store: ArtifactRepository | None = None,
        *,
        event_bus: EventBus | None = None,
    ) -> None:
        self.config = config
        self._gateway = gateway
        self._document = document
        self._store = store
        self._db: Database | None = None
        self._event_bus = event_bus or EventBus()

    def initialize(self) -> None:
        """Open the database and create tables unless a store was supplied."""
        if self._store is not None:
            return
        self._db = Database(self.config.db_path)
        self._db.connect()
        run_migrations(self._db)
        self._store = ArtifactRepository(self._db)

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def store(self) -> ArtifactRepository:
        assert self._store is not None, "Runner not initialized -- call initialize() first"
        return self._store

    @property
    def gateway(self) -> ModelServiceGateway:
        """The configured gateway, built from the environment on first use."""
        if self._gateway is None:
            inner = gateway_from_env(
                self.config.llm_provider,
                self.config.llm_model or None,
                timeout=self.config.request_timeout,
            )
            self._gateway = LoggingGateway(inner)
        return self._gateway

    def orchestrator(self, document: Document | None = None) -> RefinementOrchestrator:
        document = document if document is not None else self._document
        if document is None:
            raise ValueError("No document to refine; pass one to the runner or the call")
        return RefinementOrchestrator(
            self.gateway,
            document,
            config=self.config,
            bus=self._event_bus,
        )

    def start_refinement(
        self,
        intent: str,
        images: Sequence[ImageData] = (),
        run_config: RefinementRun | None = None,
        document: Document | None = None,
        cancel: CancellationToken | None = None,
        *,
        stylesheet: StyleDocument | None = None,
        block_key: BlockKey = DEFAULT_BLOCK_KEY,
        preference_keys: Sequence[BlockKey] = (),
    ) -> AsyncIterator[ProgressEvent | RefinementResult]:
        """Start a run and return its stream of progress events and final result."""
        orchestrator = self.orchestrator(document)
        request = RefinementRequest(
            intent=intent,
            images=tuple(images),
            block_key=block_key,
            preference_keys=tuple(preference_keys),
        )
        return orchestrator.stream(request, run_config, stylesheet, cancel)

    async def refine(
        self,
        intent: str,
        images: Sequence[ImageData] = (),
        run_config: RefinementRun | None = None,
        document: Document | None = None,
        cancel: CancellationToken | None = None,
        *,
        stylesheet: StyleDocument | None = None,
        block_key: BlockKey = DEFAULT_BLOCK_KEY,
        preference_keys: Sequence[BlockKey] = (),
        save_label: str | None = None,
        description: str = "",
    ) -> tuple[RefinementResult, Artifact | None]:
        """Run to completion; save the final CSS when *save_label* is given and the run succeeded."""
        orchestrator = self.orchestrator(document)
        request = RefinementRequest(
            intent=intent,
            images=tuple(images),
            block_key=block_key,
            preference_keys=tuple(preference_keys),
        )
        result = await orchestrator.run(request, run_config, stylesheet, cancel)

        artifact = None
        if save_label and result.succeeded and result.final_css:
            artifact = self.store.save_artifact(
                save_label, result.document.render(), description or intent
            )
            logger.info("Saved artifact %s (%s)", artifact.id, artifact.label)
        return result, artifact

    async def aclose(self) -> None:
        if self._gateway is not None and hasattr(self._gateway, "aclose"):
            await self._gateway.aclose()
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        if self._db:
            self._db.close()
            self._db = None
