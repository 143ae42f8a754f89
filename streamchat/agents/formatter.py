"""Post-stream markdown polish for a completed answer.

The reformatted answer is only accepted when it keeps every word of the
original (multiset containment), so the pass can change layout but never
drop content. Any failure returns the original text.
"""

import re
import time
from collections import Counter
from collections.abc import Callable

import structlog
from openai import AsyncOpenAI

from streamchat.core.config import settings
from streamchat.core.metrics import formatter_fallbacks_total, orchestrator_stage_duration_seconds
from streamchat.core.openai_client import get_openai_client

logger = structlog.get_logger(__name__)

_FORMATTER_SYSTEM = """\
You reformat assistant answers into clean markdown. You change layout only.

Rules:
- Keep every word, number, name and URL exactly as written. Do not add, remove,
  reorder or reword content.
- You may add headings only by turning an existing line into a heading.
- Normalise spacing, bullet and numbered lists, and tables.
- Turn bare URLs into markdown links whose text is the URL itself.
- Return only the reformatted answer, with no preamble.
"""

_WORD = re.compile(r"\w+")


def word_multiset(text: str) -> Counter:
    return Counter(_WORD.findall(text))


def preserves_words(original: str, candidate: str) -> bool:
    """True when every word of ``original`` appears at least as often in ``candidate``."""
    return not (word_multiset(original) - word_multiset(candidate))


class AnswerFormatter:
    def __init__(
        self,
        client_factory: Callable[[], AsyncOpenAI] = get_openai_client,
        model: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._client_factory = client_factory
        self.model = model or settings.FORMATTER_MODEL
        self.timeout = timeout or settings.FORMATTER_TIMEOUT

    async def reformat(self, text: str) -> str:
        """Return a markdown-polished ``text``, or ``text`` itself on any failure."""
        if not text.strip():
            return text

        start = time.monotonic()
        try:
            response = await self._client_factory().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": _FORMATTER_SYSTEM},
                    {"role": "user", "content": text},
                ],
                temperature=0,
                timeout=self.timeout,
            )
            candidate = (response.choices[0].message.content or "").strip()
        except Exception as e:
            formatter_fallbacks_total.labels(reason="error").inc()
            logger.warning("formatter.failed", error=str(e))
            return text
        finally:
            orchestrator_stage_duration_seconds.labels(stage="reformat").observe(
                time.monotonic() - start
            )

        if not candidate:
            formatter_fallbacks_total.labels(reason="empty").inc()
            logger.warning("formatter.empty_output")
            return text

        if not preserves_words(text, candidate):
            formatter_fallbacks_total.labels(reason="content_changed").inc()
            missing = word_multiset(text) - word_multiset(candidate)
            logger.warning("formatter.content_changed", missing_words=sum(missing.values()))
            return text

        logger.info("formatter.success", chars_in=len(text), chars_out=len(candidate))
        return candidate
