"""Tests for the knowledge base agent tool."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from knowledge_rag.features.knowledge.schemas import AnnotatedChunk
from knowledge_rag.features.knowledge.tools import knowledge_tools, search_knowledge_base


def fake_pipeline(results):
    pipeline = MagicMock()
    pipeline.retrieve = AsyncMock(return_value=results)
    return pipeline


class TestSearchKnowledgeBaseTool:
    def test_user_id_is_hidden_from_the_model(self):
        assert "user_id" not in search_knowledge_base.tool_call_schema.model_json_schema()["properties"]
        assert knowledge_tools == [search_knowledge_base]

    @pytest.mark.asyncio
    async def test_returns_passages_as_json(self):
        pipeline = fake_pipeline([
            AnnotatedChunk(
                content="Quantum computing uses qubits.",
                reasoning="Defines qubits.",
                quotes=["Quantum computing uses qubits."],
                similarity=0.912345,
            )
        ])
        with patch("knowledge_rag.features.knowledge.tools.get_pipeline", return_value=pipeline):
            raw = await search_knowledge_base.ainvoke({"query": "what is a qubit?", "user_id": "user-a"})

        pipeline.retrieve.assert_awaited_once_with("what is a qubit?", "user-a")
        payload = json.loads(raw)
        assert payload["status"] == "success"
        assert payload["chunks"][0]["similarity"] == 0.9123
        assert payload["chunks"][0]["quotes"] == ["Quantum computing uses qubits."]

    @pytest.mark.asyncio
    async def test_no_results(self):
        with patch("knowledge_rag.features.knowledge.tools.get_pipeline", return_value=fake_pipeline([])):
            raw = await search_knowledge_base.ainvoke({"query": "anything", "user_id": "user-a"})

        assert json.loads(raw)["chunks"] == []
