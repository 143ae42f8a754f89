"""Lazy, cached validation of the model-service API key.

The format check is a local fast path. The network check lists models once;
a definitive answer (accepted, or rejected with 401/403) is cached for the
life of the process. Transient failures are not cached and fall back to the
format check so a flaky network does not block every turn.
"""

from collections.abc import Callable

import openai
import structlog
from openai import AsyncOpenAI

from streamchat.core.config import settings
from streamchat.core.constants import UserMessages
from streamchat.core.errors import ConfigError
from streamchat.core.openai_client import get_openai_client

logger = structlog.get_logger(__name__)


def has_valid_format(api_key: str | None) -> bool:
    """Cheap structural check: non-empty and free of whitespace."""
    if not api_key or not isinstance(api_key, str):
        return False
    stripped = api_key.strip()
    return bool(stripped) and stripped == api_key and " " not in api_key


class CredentialValidator:
    def __init__(
        self,
        api_key: str | None,
        client_factory: Callable[[], AsyncOpenAI] = get_openai_client,
        timeout: float | None = None,
    ) -> None:
        self._api_key = api_key
        self._client_factory = client_factory
        self._timeout = timeout if timeout is not None else settings.CREDENTIAL_CHECK_TIMEOUT
        self._cached: bool | None = None

    @property
    def cached_result(self) -> bool | None:
        return self._cached

    async def is_valid(self) -> bool:
        if not has_valid_format(self._api_key):
            return False
        if self._cached is not None:
            return self._cached

        client = self._client_factory()
        try:
            await client.with_options(timeout=self._timeout).models.list()
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            logger.warning("credentials.rejected", status_code=getattr(e, "status_code", None))
            self._cached = False
            return False
        except Exception as e:
            logger.warning("credentials.check_failed", error=str(e))
            return True

        logger.info("credentials.validated")
        self._cached = True
        return True

    async def ensure_valid(self) -> None:
        """Raise ConfigError unless the key is present and accepted."""
        if not has_valid_format(self._api_key):
            raise ConfigError(UserMessages.MISSING_API_KEY)
        if not await self.is_valid():
            raise ConfigError(UserMessages.INVALID_API_KEY)
