"""
Task Classifier

Responsibilities:
- Summarize a discussion thread
- Detect actionable tasks and label each with one allowed topic
- Cache results by thread content through an injected AnalysisCache
"""

import logging
import time
from typing import Any, Dict, List, Optional

from langchain_core.prompts import ChatPromptTemplate

from threadrouter.ai_core.classification.cache import AnalysisCache
from threadrouter.ai_core.prompts.classification import (
    CLASSIFICATION_SYSTEM_PROMPT,
    CLASSIFICATION_USER_PROMPT_TEMPLATE,
)
from threadrouter.config import Settings, get_settings
from threadrouter.models.records import AISettings
from threadrouter.models.tasks import AnalysisResult, TaskDetectionOutput
from threadrouter.models.thread import DiscussionThread
from threadrouter.utils.helpers import content_hash, normalize_topic

logger = logging.getLogger(__name__)


# Custom Exceptions


class ClassificationError(Exception):
    """
    Raised when the LLM fails to produce a usable analysis.
    Treated as transient: the processor retries the ai_analysis stage.
    """

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


def format_thread(thread: DiscussionThread) -> str:
    """Render a thread as plain text for the prompt."""
    lines = [f"Root message by {thread.root_message.author_handle}:", thread.root_message.content]
    for reply in thread.replies:
        lines.append("")
        lines.append(f"Reply by {reply.author_handle}:")
        lines.append(reply.content)
    return "\n".join(lines)


class TaskClassifier:
    """
    Classifies discussion threads into tasks using an LLM with structured output.

    The chat model is created lazily from the gen_ai_hub proxy unless one is
    injected (tests inject a fake model).
    """

    def __init__(
        self,
        llm: Optional[Any] = None,
        cache: Optional[AnalysisCache] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.cache = cache
        self._llms: Dict[str, Any] = {}
        self._injected_llm = llm

    def _get_llm(self, model: Optional[str] = None):
        if self._injected_llm is not None:
            return self._injected_llm

        model_name = model or self.settings.openai_model
        if model_name not in self._llms:
            from gen_ai_hub.proxy.langchain.openai import ChatOpenAI
            from gen_ai_hub.proxy.core.proxy_clients import get_proxy_client

            proxy_client = get_proxy_client("gen-ai-hub")
            self._llms[model_name] = ChatOpenAI(
                proxy_model_name=model_name,
                proxy_client=proxy_client,
                temperature=self.settings.temperature,
            )
            logger.info(f"TaskClassifier initialized model {model_name}")
        return self._llms[model_name]

    async def classify(
        self,
        thread: DiscussionThread,
        accepted_topics: List[str],
        ai_settings: Optional[AISettings] = None,
        source_type: str = "a discussion tool",
    ) -> AnalysisResult:
        """
        Summarize a thread and detect its tasks.

        Args:
            thread: Full discussion thread
            accepted_topics: Topic labels the model may assign
            ai_settings: Flow-level prompt overrides and task limit
            source_type: Platform name used in the prompt

        Returns:
            AnalysisResult (cached=True when served from the cache)

        Raises:
            ClassificationError: If the LLM call fails or returns no output
        """
        ai_settings = ai_settings or AISettings()
        max_tasks = ai_settings.max_tasks or self.settings.default_max_tasks
        topics = sorted({t for t in (normalize_topic(t) for t in accepted_topics) if t})
        discussion = format_thread(thread)

        cache_key = content_hash(
            thread.id,
            discussion,
            ",".join(topics),
            str(max_tasks),
            ai_settings.summary_prompt or "",
            ai_settings.task_prompt or "",
            ai_settings.model or "",
        )
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"Analysis cache hit for thread {thread.id}")
                return cached

        start = time.monotonic()
        logger.info(f"Classifying thread {thread.id} ({thread.message_count} messages)")

        custom_instructions = "\n\n".join(
            p for p in (ai_settings.summary_prompt, ai_settings.task_prompt) if p
        )

        prompt = ChatPromptTemplate.from_messages(
            [
                ("system", CLASSIFICATION_SYSTEM_PROMPT),
                ("human", CLASSIFICATION_USER_PROMPT_TEMPLATE),
            ]
        )
        chain = prompt | self._get_llm(ai_settings.model).with_structured_output(
            TaskDetectionOutput
        )

        try:
            output = await chain.ainvoke(
                {
                    "source_type": source_type,
                    "max_tasks": max_tasks,
                    "accepted_topics": "\n".join(f"- {t}" for t in topics) or "(none)",
                    "custom_instructions": custom_instructions,
                    "discussion": discussion,
                }
            )
        except Exception as e:
            logger.error(f"Classification failed for thread {thread.id}: {e}", exc_info=True)
            raise ClassificationError(f"LLM classification failed: {e}")

        if output is None:
            raise ClassificationError("LLM returned no structured output")

        tasks = output.tasks[:max_tasks]
        if len(output.tasks) > max_tasks:
            logger.warning(
                f"LLM returned {len(output.tasks)} tasks; keeping first {max_tasks}"
            )

        allowed = set(topics)
        for task in tasks:
            topic = normalize_topic(task.topic)
            if topic is not None and topic not in allowed:
                logger.info(f"Dropping unknown topic '{task.topic}' from task '{task.title}'")
                topic = None
            task.topic = topic

        result = AnalysisResult(
            summary=output.summary,
            tasks=tasks,
            processing_time=time.monotonic() - start,
            cached=False,
        )

        if self.cache is not None:
            self.cache.set(cache_key, result)

        logger.info(
            f"Detected {len(tasks)} task(s) in thread {thread.id} "
            f"in {result.processing_time:.2f}s"
        )
        return result
