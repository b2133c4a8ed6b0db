"""
End-to-end translation run.

1. Validate configuration
2. Optionally generate new glossary entries (stage 1) and merge them into
   the stored glossary (stage 2), then save it
3. Translate with the configured strategy (stage 3a chunking, 3b translation)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from .config import TranslatorConfig, load_api_keys, validate_config
from .errors import ConfigError
from .logging_utils import log
from .models.glossary import Glossary
from .services.dry_run import DryRunClient
from .services.glossary_service import GlossaryConflictResolver, GlossaryManager, Stage1Generator
from .services.llm_client import LLMClient
from .services.progress import ErrorCounter
from .services.prompts import PromptManager
from .services.request_queue import RequestQueue, RequestQueueConfig
from .services.strategies import create_strategy
from .sinks import Sink
from .storage import GlossaryStore
from .text_utils import preprocess_text

# stage name -> object with ``async completion(system, user)``
ClientFactory = Callable[[str], Any]


class TranslationSession:
    """
    Per-run state: configuration, API keys and the shared error counter.

    Creates one client and one request queue per pipeline stage.

    Usage:
        session = TranslationSession.from_environment(config)
        result = await run_pipeline(session, paragraphs, sink, store, "my-novel")
    """

    def __init__(
        self,
        config: TranslatorConfig,
        api_keys: Optional[Dict[str, str]] = None,
        dry_run: bool = False,
        client_factory: Optional[ClientFactory] = None,
    ):
        """
        Initialize session.

        Args:
            config: Translator configuration
            api_keys: Provider API keys (see config.load_api_keys)
            dry_run: Use DryRunClient instead of real providers
            client_factory: Builds the completion client for a stage; overrides dry_run
        """
        self.config = config
        self.api_keys = dict(api_keys or {})
        self.dry_run = dry_run
        self.error_counter = ErrorCounter()
        self.queues: List[RequestQueue] = []
        self._client_factory = client_factory

    @classmethod
    def from_environment(cls, config: TranslatorConfig, dry_run: bool = False, env_file: Optional[str] = None) -> TranslationSession:
        return cls(config, api_keys=load_api_keys(env_file), dry_run=dry_run)

    def validate(self) -> None:
        """Raises ConfigError if the configuration cannot run."""
        validate_config(self.config, self.api_keys, check_keys=not (self.dry_run or self._client_factory))

    def queue_config(self) -> RequestQueueConfig:
        q = self.config.queue
        return RequestQueueConfig(
            max_concurrency=q.max_concurrency,
            max_calls_per_sec=q.max_calls_per_sec,
            refill_interval=q.refill_interval,
            max_retries=q.max_retries,
            base_retry_delay=q.base_retry_delay,
            retry_jitter=q.retry_jitter,
        )

    def create_client(self, stage: str) -> Any:
        if self._client_factory is not None:
            return self._client_factory(stage)
        if self.dry_run:
            return DryRunClient()

        model_id = getattr(self.config, stage)
        if model_id is None:
            raise ConfigError(f"No model selected for {stage}")
        return LLMClient.for_model(model_id, self.api_keys)

    def create_queue(self, stage: str, label: str) -> RequestQueue:
        queue = RequestQueue.from_client(
            self.create_client(stage),
            label=label,
            config=self.queue_config(),
            error_counter=self.error_counter,
        )
        self.queues.append(queue)
        return queue


@dataclass
class PipelineResult:
    """Outcome of one run."""
    glossary: Glossary
    errors: int
    glossary_updated: bool


async def run_pipeline(
    session: TranslationSession,
    paragraphs: Mapping[str, str],
    sink: Sink,
    store: GlossaryStore,
    scope_id: str,
) -> PipelineResult:
    """
    Translate ``paragraphs`` (paragraph id -> raw text) into ``sink``.

    Raises:
        ConfigError: If the configuration is invalid
    """
    session.validate()
    config = session.config

    texts = {pid: preprocess_text(text) for pid, text in paragraphs.items()}
    glossary = store.load_glossary(scope_id)
    glossary_updated = False

    if config.stage1 and config.stage2:
        manager = GlossaryManager(
            Stage1Generator(
                session.create_queue("stage1", "Glossary Generation"),
                chunk_size=config.glossary_chunk_size,
            ),
            GlossaryConflictResolver(session.create_queue("stage2", "Glossary Update")),
        )
        glossary = await manager.generate_and_update(glossary, [t for t in texts.values() if t])
        store.save_glossary(scope_id, glossary)
        glossary_updated = True

    prompt_manager = PromptManager(config, glossary)
    strategy = create_strategy(config, prompt_manager, session.create_queue, sink)
    await strategy.execute(texts)

    errors = session.error_counter.count
    if errors:
        log(f"Translation finished with {errors} failed requests")
    else:
        log("Translation finished")
    return PipelineResult(glossary=glossary, errors=errors, glossary_updated=glossary_updated)
