"""Question answering over retrieved context.

Embeds the question, retrieves the nearest chunks, assembles a bounded
context, asks the chat model and formats the answer with its sources.
"""
from dataclasses import dataclass
from typing import List, Optional

import structlog

from docrag.errors import DocRagError, NotFound, StageFailed
from docrag.llm_client import ProviderClient
from docrag.rag.retriever import ContextAssembler, Retriever
from docrag.rag.store_chroma import QueryHit

logger = structlog.get_logger()

PROMPT_TEMPLATE = (
    "Here is the information found for your request:\n\n"
    "{context}\n\n---\n\n"
    "Question: {question}\n"
    "Answer:"
)

PREVIEW_CHARS = 500


def build_final_prompt(question: str, context: str) -> str:
    """Wrap the context and the user's question into one instruction."""
    return PROMPT_TEMPLATE.format(context=context, question=question)


@dataclass
class AnswerResult:
    """Generated answer with the hits it was based on."""

    question: str
    answer: str
    hits: List[QueryHit]
    context: str


class QueryPipeline:
    """Answers one question at a time, end to end."""

    def __init__(
        self,
        provider: ProviderClient,
        retriever: Retriever,
        assembler: Optional[ContextAssembler] = None,
    ):
        """Initialize the query pipeline.

        Args:
            provider: Chat-completion provider client
            retriever: Retriever bound to the collection to search
            assembler: Context assembler (default: provider's context budget)
        """
        self.provider = provider
        self.retriever = retriever
        self.assembler = assembler or ContextAssembler(provider.context_char_budget)

    async def answer(self, question: str) -> AnswerResult:
        """Answer a question from the indexed document.

        Raises:
            ValueError: If the question is blank
            StageFailed: If any stage fails; nothing is returned in that case
        """
        if not question or not question.strip():
            raise ValueError("Question must not be empty")

        logger.info("answer_started", question_length=len(question))

        hits = await self.retriever.retrieve(question)
        context = self.assembler.assemble(hits)
        if not context:
            error = NotFound(
                f"None of the {len(hits)} retrieved chunk(s) fits the "
                f"{self.assembler.max_chars}-character context budget"
            )
            raise StageFailed("assemble_context", error) from error

        prompt = build_final_prompt(question, context)

        try:
            answer = await self.provider.generate(prompt)
        except DocRagError as e:
            raise StageFailed("generate", e) from e

        logger.info("answer_completed", answer_length=len(answer), sources=len(hits))
        return AnswerResult(question=question, answer=answer, hits=hits, context=context)


def render_answer(result: AnswerResult, preview_chars: int = PREVIEW_CHARS) -> str:
    """Format the answer followed by the sources it used."""
    lines = ["", "🧠 Answer:", "", result.answer, "", "📚 Sources used for the answer:", ""]

    for i, hit in enumerate(result.hits, 1):
        lines.append(f"🔹 {i}. {hit.title}")
        lines.append(f"   🔗 {hit.source_id or '-'}")
        lines.append(f"   📊 Similarity: {hit.similarity_label}")
        lines.append(f"   📄 Fragment:\n{hit.document[:preview_chars]}")
        lines.append("")

    return "\n".join(lines)
