"""
Tests for MemorySession wiring: recall placement, turn bookkeeping and
construction from configuration.
"""

from unittest.mock import AsyncMock, MagicMock

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from langchain_memory.config import MemoryConfig
from langchain_memory.messages import MessageTag, get_tag
from langchain_memory.middleware import MemoryMiddleware
from langchain_memory.recaller import PRIMARY_HEADER, MemoryRecaller
from langchain_memory.session import MemorySession, get_credentials
from langchain_memory.store import KeywordMemoryStore, MemoryEntry, VectorMemoryStore
from langchain_memory.tiers import InMemoryTierStore, Tier

from fakes import ScriptedChatModel, TableEmbeddings, tool_calls


def _failing_recaller() -> MagicMock:
    recaller = MagicMock()
    recaller.recall = AsyncMock(side_effect=RuntimeError("recall model down"))
    return recaller


async def _session_with_memory(llm):
    tiers = InMemoryTierStore({Tier.PRIMARY: "## Key facts\n- likes tea", Tier.RECENT: "- talked about tea"})
    store = KeywordMemoryStore()
    await store.add(MemoryEntry(content="The project is called Orion", keywords=["project", "orion"]))
    middleware = MemoryMiddleware(MemoryConfig(), tiers, inject_primary=False)
    recaller = MemoryRecaller(llm, store, tiers)
    return MemorySession(middleware, recaller=recaller, store=store), tiers


# ── Turn Tests ──


class TestPrepareTurn:
    async def test_recall_message_after_system_messages(self):
        llm = ScriptedChatModel([tool_calls(("search_memory", {"query": "project"}))])
        session, _ = await _session_with_memory(llm)

        history = [HumanMessage(content="what is my project called?")]
        context = await session.prepare_turn(history, "what is my project called?")

        assert [get_tag(m) for m in context] == [
            MessageTag.UNTAGGED,
            MessageTag.RECENT,
            MessageTag.RECALLED,
            MessageTag.UNTAGGED,
        ]
        recalled = context[2].content
        assert recalled.startswith(PRIMARY_HEADER)
        assert "likes tea" in recalled
        assert "The project is called Orion" in recalled
        assert context[3] is history[0]

    async def test_recall_failure_falls_back(self, tiers):
        middleware = MemoryMiddleware(MemoryConfig(), tiers)
        session = MemorySession(middleware, recaller=_failing_recaller())

        context = await session.prepare_turn([HumanMessage(content="hi")], "hi")
        assert [m.content for m in context[1:]] == ["hi"]
        assert isinstance(context[0], SystemMessage)

    async def test_recall_failure_keeps_primary_memory(self):
        session, _ = await _session_with_memory(ScriptedChatModel())
        session.recaller = _failing_recaller()

        context = await session.prepare_turn([HumanMessage(content="hi")], "hi")
        assert [get_tag(m) for m in context] == [
            MessageTag.UNTAGGED,
            MessageTag.PRIMARY,
            MessageTag.RECENT,
            MessageTag.UNTAGGED,
        ]
        assert "likes tea" in context[1].content

    async def test_no_query_keeps_primary_memory(self):
        session, _ = await _session_with_memory(ScriptedChatModel())
        session.recaller = _failing_recaller()

        context = await session.prepare_turn([AIMessage(content="hello again")])
        session.recaller.recall.assert_not_called()
        assert MessageTag.PRIMARY in [get_tag(m) for m in context]

    async def test_without_recaller(self, tiers):
        session = MemorySession(MemoryMiddleware(MemoryConfig(), tiers))
        context = await session.prepare_turn([HumanMessage(content="hi")])
        assert len(context) == 2

    async def test_latest_user_input_from_history(self, tiers):
        recaller = _failing_recaller()
        session = MemorySession(MemoryMiddleware(MemoryConfig(), tiers), recaller=recaller)
        await session.prepare_turn([HumanMessage(content="first question")])
        session.finish_turn([AIMessage(content="answer")])
        recaller.remember_turn.assert_called_once_with("first question", "answer")


class TestFinishTurn:
    async def test_writes_working_memory_and_log(self):
        llm = ScriptedChatModel()
        session, tiers = await _session_with_memory(llm)
        await session.prepare_turn([HumanMessage(content="name the project")], "name the project")

        session.finish_turn([
            AIMessage(content="", tool_calls=[{"name": "search_memory", "args": {"query": "project"}, "id": "c1"}]),
            AIMessage(content="It is Orion"),
        ])

        working = tiers.read(Tier.WORKING)
        assert working.startswith("User: name the project")
        assert working.endswith("Assistant: It is Orion")
        assert session.recaller.conversation_log == ["User: name the project", "Assistant: It is Orion"]

    async def test_tools_bound_to_store(self):
        session, _ = await _session_with_memory(ScriptedChatModel())
        assert [t.name for t in session.tools] == ["search_memory", "get_recent_memories"]

    def test_no_store_no_tools(self, tiers):
        session = MemorySession(MemoryMiddleware(MemoryConfig(), tiers))
        assert session.tools == []


# ── Construction Tests ──


class TestFromConfig:
    async def test_vector_store_with_embeddings(self, config):
        session = await MemorySession.from_config(
            config=config,
            llm=ScriptedChatModel(),
            embeddings=TableEmbeddings({}),
            tiers=InMemoryTierStore(),
        )
        try:
            assert isinstance(session.store, VectorMemoryStore)
            assert session.recaller is not None
            assert session.middleware.curator is not None
            assert session.middleware.archiver is not None
            assert session.middleware.inject_primary is False
            assert config.database_path.exists()
        finally:
            await session.close()

    async def test_keyword_store_without_embeddings(self, config, monkeypatch):
        for name in ("MODEL_PROVIDER", "API_BASE_URL", "OPENAI_BASE_URL"):
            monkeypatch.delenv(name, raising=False)

        session = await MemorySession.from_config(
            config=config, llm=ScriptedChatModel(), tiers=InMemoryTierStore()
        )
        assert isinstance(session.store, KeywordMemoryStore)

    async def test_components_can_be_disabled(self, tmp_path):
        config = MemoryConfig(
            memory_dir=tmp_path,
            enable_curator=False,
            enable_recaller=False,
            enable_archiver=False,
        )
        session = await MemorySession.from_config(
            config=config,
            llm=ScriptedChatModel(),
            embeddings=TableEmbeddings({}),
            tiers=InMemoryTierStore(),
        )
        try:
            assert session.recaller is None
            assert session.middleware.curator is None
            assert session.middleware.archiver is None
            assert session.middleware.inject_primary is True
        finally:
            await session.close()


class TestCredentials:
    def test_generic_variables_win(self, monkeypatch):
        monkeypatch.setenv("API_KEY", "generic-key")
        monkeypatch.setenv("OPENAI_API_KEY", "openai-key")
        monkeypatch.setenv("API_BASE_URL", "https://generic.example/v1")
        monkeypatch.setenv("OPENAI_BASE_URL", "https://openai.example/v1")
        assert get_credentials() == ("generic-key", "https://generic.example/v1")

    def test_provider_fallback(self, monkeypatch):
        monkeypatch.delenv("API_KEY", raising=False)
        monkeypatch.delenv("API_BASE_URL", raising=False)
        monkeypatch.setenv("OPENAI_API_KEY", "openai-key")
        monkeypatch.delenv("OPENAI_BASE_URL", raising=False)
        assert get_credentials() == ("openai-key", None)
