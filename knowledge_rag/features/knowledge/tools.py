"""
Knowledge feature: Agent tools for RAG-based knowledge retrieval.
These are LangChain @tool functions a chat agent can call.
"""

import json
from typing import Annotated

from langchain_core.tools import tool, InjectedToolArg

from knowledge_rag.core.dependencies import get_pipeline


@tool
async def search_knowledge_base(
    query: str,
    user_id: Annotated[str, InjectedToolArg] = "",
) -> str:
    """Search the user's uploaded documents for passages that answer a question.
    Use this whenever the user asks about something that may be in their knowledge base.

    Args:
        query: The question or keywords to look up.

    Returns:
        JSON with the relevant passages, the reasoning for each, exact supporting
        quotes and the similarity score. Read them to compose the answer.
    """
    pipeline = get_pipeline()
    results = await pipeline.retrieve(query, user_id)

    if not results:
        return json.dumps({
            "status": "success",
            "message": "No relevant information found in the knowledge base.",
            "chunks": [],
        }, ensure_ascii=False)

    chunks = [
        {
            "content": r.content,
            "reasoning": r.reasoning,
            "quotes": r.quotes,
            "similarity": round(r.similarity, 4),
        }
        for r in results
    ]
    return json.dumps({
        "status": "success",
        "message": f"Found {len(chunks)} relevant passage(s).",
        "chunks": chunks,
    }, ensure_ascii=False)


# Export all knowledge tools for an agent graph
knowledge_tools = [search_knowledge_base]
