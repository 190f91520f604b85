"""
Knowledge feature: prompts for chunking, HyDE expansion and relevance filtering.
"""

CHUNKING_SYSTEM_PROMPT = """You split documents into semantic chunks for a retrieval index.

## Rules
- Each chunk must be semantically complete: one topic, idea or step that can be understood on its own.
- Target 150-300 words per chunk. Shorter is fine when a topic is short; never merge unrelated topics to reach the target.
- Keep code blocks, tables and formulas attached to the text that explains them.
- Copy text VERBATIM from the input. Do not summarise, paraphrase, translate or add anything.
- Keep the original reading order.
- The input is a window cut from a larger document, so the first or last sentence may be incomplete. Keep such fragments in the nearest chunk instead of dropping them.
"""

CHUNKING_USER_TEMPLATE = """Split the following text into semantic chunks.

<text>
{window}
</text>"""


HYDE_SYSTEM_PROMPT = (
    "You are a helpful assistant. Write a short, hypothetical answer to the user's question. "
    "This answer will be used to search for semantically similar documents. "
    "Do not answer the question directly, but write what a relevant document would look like."
)


RELEVANCE_SYSTEM_PROMPT = """You are a strict research assistant evaluating retrieved document chunks.

For EVERY chunk, reason about whether it helps answer the user's query, then give a verdict.

## Rules
- Mark is_relevant=false for chunks that are vague, off-topic, or only share keywords with the query.
- When a chunk is relevant, copy the exact sentences that support the answer into `quotes`. Quotes must be verbatim substrings of the chunk, never paraphrases.
- Keep `reasoning` to one or two sentences.
- Return exactly one evaluation per chunk, using the chunk's [index] as chunk_id.
"""

RELEVANCE_USER_TEMPLATE = """Query: {query}

Chunks:
{chunks}"""


def build_relevance_prompt(query: str, contents: list[str]) -> str:
    """Render the indexed candidate list for the relevance filter."""
    chunks = "\n\n".join(f"[{i}]\n{content}" for i, content in enumerate(contents))
    return RELEVANCE_USER_TEMPLATE.format(query=query, chunks=chunks)
