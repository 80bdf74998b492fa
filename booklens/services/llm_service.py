"""LLM service for summaries and question answering over document chunks."""
import os
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from openai import AsyncOpenAI

from booklens.exceptions import GenerationError
from booklens.models.document import Chunk
from booklens.utils.logger import logger
from booklens.utils.metrics import LLM_REQUEST_SECONDS
from booklens.utils.tracer import start_span


def build_context(chunks: Sequence[Chunk], max_words: int) -> List[str]:
    """
    Select chunk texts for a prompt under a word budget.

    Chunks are taken in index order and selection stops at the first chunk
    that would exceed the budget, so the context is always a prefix of the
    reader's window. The first chunk is always kept.

    Args:
        chunks: Candidate chunks
        max_words: Word budget for the whole context

    Returns:
        Chunk contents in reading order
    """
    selected = []
    total_words = 0
    for chunk in sorted(chunks, key=lambda c: c.chunk_index):
        if selected and total_words + chunk.word_count > max_words:
            break
        selected.append(chunk.content)
        total_words += chunk.word_count
    return selected


class LLMService:
    """Service for an OpenAI-compatible chat completions API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: str = "https://api.together.xyz/v1/chat/completions",
        model: str = "meta-llama/Llama-4-Scout-17B-16E-Instruct",
        timeout: float = 60.0,
        max_tokens: int = 2000,
        max_context_words: int = 6000,
    ):
        """
        Initialize LLM service.

        Args:
            api_key: API key (from LLM_API_KEY env if not provided)
            api_url: Chat completions endpoint URL
            model: Model name to use
            timeout: HTTP timeout in seconds
            max_tokens: Completion token limit
            max_context_words: Word budget for chunk context in prompts
        """
        self.api_key = api_key or os.getenv("LLM_API_KEY")
        if not self.api_key:
            raise ValueError("LLM_API_KEY environment variable is required")

        self.api_url = api_url
        self.model = model
        self.max_tokens = max_tokens
        self.max_context_words = max_context_words

        # The SDK appends /chat/completions itself
        base_url = api_url.split("/chat/completions")[0].rstrip("/")

        http_client = httpx.AsyncClient(timeout=timeout)
        self.client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=base_url,
            http_client=http_client,
        )
        logger.info(f"LLM service initialized with model {model} at {base_url}")

    def _build_summary_prompt(
        self, context: List[str], progress_percentage: float, title: Optional[str]
    ) -> str:
        progress = round(progress_percentage)
        book_content = "\n\n".join(context)

        return f"""You are an expert book summarizer. Please provide a comprehensive summary of the following book content.

Book Title: {title or 'Unknown'}
Reading Progress: {progress}% complete

Context from the book:
{book_content}

Please provide a detailed summary that captures:
1. Main themes and ideas covered so far
2. Key events or concepts
3. Important character developments (if applicable)
4. Major plot points or arguments presented

Keep the summary engaging and well-structured. Focus only on the content provided (up to {progress}% of the book).

Summary:"""

    def _build_qa_prompt(
        self, question: str, context: List[str], extra_context: Optional[str]
    ) -> str:
        book_content = "\n\n".join(context)
        additional = f"Additional Context: {extra_context}" if extra_context else ""

        return f"""You are an expert book assistant. Answer the following question based ONLY on the provided book content. If the answer is not in the provided content, say so clearly.

Book Content:
{book_content}

{additional}

Question: {question}

Please provide a detailed, accurate answer based on the book content. If you cannot answer based on the provided content, explain what information would be needed.

Answer:"""

    async def _complete(
        self,
        prompt: str,
        operation: str,
        temperature: float,
        top_p: float,
        top_k: int,
    ) -> Tuple[str, Dict[str, int]]:
        """
        Run one chat completion.

        Returns:
            (trimmed completion text, token usage)

        Raises:
            GenerationError: If the call failed or returned no text
        """
        start_time = time.time()
        try:
            with start_span(f"llm.{operation}", model=self.model, prompt_chars=len(prompt)):
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    max_tokens=self.max_tokens,
                    temperature=temperature,
                    top_p=top_p,
                    extra_body={"top_k": top_k, "repetition_penalty": 1.1},
                )
        except Exception as e:
            logger.error(f"Error calling LLM API ({operation}): {str(e)}", exc_info=True)
            raise GenerationError(f"Failed to generate {operation}: {str(e)}") from e
        finally:
            LLM_REQUEST_SECONDS.labels(operation=operation).observe(time.time() - start_time)

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise GenerationError(f"No {operation} generated from AI response")

        token_usage = {}
        if response.usage:
            token_usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        logger.info(
            f"LLM {operation} generated",
            extra={
                "token_usage": token_usage,
                "response_time_ms": (time.time() - start_time) * 1000,
                "answer_length": len(content),
            },
        )
        return content.strip(), token_usage

    async def generate_summary(
        self,
        chunks: Sequence[Chunk],
        progress_percentage: float,
        title: Optional[str] = None,
    ) -> str:
        """
        Summarize the chunks a reader has seen.

        Args:
            chunks: Chunks up to the reader's progress
            progress_percentage: Reading progress shown to the model
            title: Document title

        Returns:
            Summary text
        """
        context = build_context(chunks, self.max_context_words)
        prompt = self._build_summary_prompt(context, progress_percentage, title)
        summary, _ = await self._complete(
            prompt, "summary", temperature=0.3, top_p=0.7, top_k=50
        )
        return summary

    async def answer_question(
        self,
        question: str,
        chunks: Sequence[Chunk],
        context: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Answer a question from document chunks.

        Args:
            question: Reader's question
            chunks: Candidate chunks, trimmed to the context budget
            context: Additional context line (e.g. the book title)

        Returns:
            Dictionary with answer, chunks_used, token_usage and response_time_ms
        """
        start_time = time.time()
        selected = build_context(chunks, self.max_context_words)
        prompt = self._build_qa_prompt(question, selected, context)
        answer, token_usage = await self._complete(
            prompt, "answer", temperature=0.2, top_p=0.8, top_k=40
        )

        return {
            "answer": answer,
            "chunks_used": len(selected),
            "token_usage": token_usage,
            "response_time_ms": (time.time() - start_time) * 1000,
        }

    async def close(self):
        """Close HTTP client."""
        await self.client.close()
