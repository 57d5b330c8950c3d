"""
Per-conversation wiring of the memory pipeline.

``MemorySession`` owns one window reducer and, optionally, one recall gate.
Each turn:

    context = await session.prepare_turn(history, user_input)
    response = await llm.ainvoke(context)
    session.finish_turn([response])
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from langchain.chat_models import init_chat_model
from langchain_core.messages import AIMessage, SystemMessage

from .archiver import TierArchiver
from .config import MemoryConfig
from .curator import MemoryCurator
from .messages import MessageTag, get_tag
from .middleware import DEFAULT_SYSTEM_PROMPT, MemoryMiddleware
from .recaller import MemoryRecaller
from .rerank import DashScopeRerankClient
from .store import KeywordMemoryStore, MemoryStore, VectorMemoryStore
from .tiers import FileTierStore, TierStore
from .tools import create_memory_tools
from .transcript import content_text

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_MODEL = "gpt-4o-mini"


def _leading_count(messages: list, predicate) -> int:
    """Number of leading messages matching ``predicate``."""
    count = 0
    while count < len(messages) and predicate(messages[count]):
        count += 1
    return count


def get_credentials() -> tuple[str | None, str | None]:
    """
    API credentials for the memory models.

    Generic variables win over provider-specific ones:
    - API Key: API_KEY > OPENAI_API_KEY
    - Base URL: API_BASE_URL > OPENAI_BASE_URL

    Returns:
        (api_key, base_url) tuple
    """
    api_key = os.getenv("API_KEY") or os.getenv("OPENAI_API_KEY")
    base_url = os.getenv("API_BASE_URL") or os.getenv("OPENAI_BASE_URL")
    return api_key, base_url


def create_memory_llm(model: Optional[str] = None):
    """Chat model for the curator, recall gate and archiver."""
    api_key, base_url = get_credentials()
    init_kwargs = {"temperature": 0.3, "max_tokens": 4000}
    if api_key:
        init_kwargs["api_key"] = api_key
    if base_url:
        init_kwargs["base_url"] = base_url

    # model_provider is inferred by init_chat_model when unset
    model_provider = os.getenv("MODEL_PROVIDER")
    provider_kwargs = {}
    if model_provider:
        provider_kwargs["model_provider"] = model_provider

    return init_chat_model(
        model or os.getenv("MEMORY_MODEL", DEFAULT_MEMORY_MODEL),
        **provider_kwargs,
        **init_kwargs,
    )


def create_embeddings(config: MemoryConfig):
    """OpenAI-compatible embeddings, or None when no endpoint is configured."""
    api_key, base_url = get_credentials()
    model_provider = os.getenv("MODEL_PROVIDER")

    # Embedding credentials: dedicated env vars > general credentials
    embed_base_url = config.embedding_base_url or base_url
    embed_api_key = config.embedding_api_key or api_key

    if not (model_provider == "openai" or embed_base_url or config.embedding_api_key):
        logger.info(
            "No embedding model configured for provider '%s', memory will use keyword search",
            model_provider,
        )
        return None

    from langchain_openai import OpenAIEmbeddings

    embed_kwargs = {}
    if embed_api_key:
        embed_kwargs["api_key"] = embed_api_key
    if embed_base_url:
        embed_kwargs["base_url"] = embed_base_url
    return OpenAIEmbeddings(model=config.embedding_model, **embed_kwargs)


class MemorySession:
    """
    Reducer plus recall gate for one conversation.

    Usage:
        session = await MemorySession.from_config()
        context = await session.prepare_turn(history, "hello again")
    """

    def __init__(
        self,
        middleware: MemoryMiddleware,
        recaller: Optional[MemoryRecaller] = None,
        store: Optional[MemoryStore] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.middleware = middleware
        self.recaller = recaller
        self.store = store
        self._log = logger or logging.getLogger(__name__)

    @classmethod
    async def from_config(
        cls,
        config: Optional[MemoryConfig] = None,
        llm=None,
        embeddings=None,
        reranker=None,
        tiers: Optional[TierStore] = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> "MemorySession":
        """Build the full pipeline from configuration and environment."""
        # override=True so .env wins over the process environment
        load_dotenv(override=True)
        config = config or MemoryConfig.from_env()
        tiers = tiers or FileTierStore.from_config(config)

        if llm is None:
            try:
                llm = create_memory_llm()
            except Exception as e:
                logger.warning("Failed to create memory LLM, curator/recall/archive disabled: %s", e)

        if embeddings is None:
            try:
                embeddings = create_embeddings(config)
            except Exception as e:
                logger.warning("Failed to create embedding model: %s", e)

        if reranker is None and config.rerank_enabled and config.rerank_api_key:
            reranker = DashScopeRerankClient(
                api_key=config.rerank_api_key,
                model=config.rerank_model,
                endpoint=config.rerank_endpoint,
                timeout=config.embed_timeout,
            )

        if embeddings is not None:
            store: MemoryStore = await VectorMemoryStore.from_config(config, embeddings, reranker)
        else:
            store = KeywordMemoryStore(max_entries=config.max_entries)

        curator = None
        archiver = None
        recaller = None
        if llm is not None:
            if config.enable_curator:
                curator = MemoryCurator(
                    llm,
                    store,
                    tiers,
                    max_mutations=config.max_curator_mutations,
                    max_rounds=config.max_tool_rounds,
                    timeout=config.llm_timeout,
                )
            if config.enable_archiver:
                archiver = TierArchiver(
                    llm,
                    tiers,
                    recent_memory_threshold=config.recent_memory_threshold,
                    max_rounds=config.max_tool_rounds,
                    timeout=config.llm_timeout,
                )
            if config.enable_recaller:
                recaller = MemoryRecaller(
                    llm,
                    store,
                    tiers,
                    max_memories=config.max_recall_memories,
                    max_rounds=config.max_tool_rounds,
                    timeout=config.llm_timeout,
                )

        # The recall message carries Primary Memory when the gate is on
        middleware = MemoryMiddleware(
            config,
            tiers,
            archiver=archiver,
            curator=curator,
            system_prompt=system_prompt,
            inject_primary=recaller is None,
        )
        return cls(middleware, recaller=recaller, store=store)

    @property
    def tools(self) -> list:
        """Memory tools for the main agent."""
        if self.store is None:
            return []
        return create_memory_tools(self.store)

    async def prepare_turn(self, history: list, user_input: Optional[str] = None) -> list:
        """
        Context for the next completion call.

        ``history`` is the full conversation including the new user message.
        The recall message goes right after the system and tier messages.
        Without a recall message, Primary Memory is injected as a tier
        message so it never drops out of the context.
        """
        if user_input:
            self.middleware.latest_user_input = user_input
        messages = await self.middleware.reduce(history)
        if self.recaller is None:
            return messages

        recalled = None
        query = user_input or self.middleware.latest_user_input
        if query:
            try:
                recalled = await self.recaller.recall(query)
            except Exception as e:
                self._log.warning("Memory recall failed, continuing without it: %s", e)

        if recalled is not None:
            position = _leading_count(messages, lambda m: isinstance(m, SystemMessage))
            return [*messages[:position], recalled, *messages[position:]]

        if self.middleware.inject_primary:
            return messages
        primary = self.middleware.primary_message()
        if primary is None:
            return messages
        # Primary goes first among the tier messages
        position = _leading_count(
            messages,
            lambda m: isinstance(m, SystemMessage) and get_tag(m) == MessageTag.UNTAGGED,
        )
        return [*messages[:position], primary, *messages[position:]]

    def finish_turn(self, response_messages: Optional[list] = None) -> None:
        """Persist Working Memory and log the turn for the recall gate."""
        response_messages = response_messages or []
        self.middleware.save_working_memory(response_messages)

        if self.recaller is not None:
            reply = ""
            for msg in reversed(response_messages):
                if isinstance(msg, AIMessage) and content_text(msg):
                    reply = content_text(msg)
                    break
            self.recaller.remember_turn(self.middleware.latest_user_input, reply)

    async def close(self) -> None:
        if isinstance(self.store, VectorMemoryStore):
            await self.store.close()
