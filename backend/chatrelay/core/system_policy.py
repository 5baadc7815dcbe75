"""
Process-wide system policy (the instruction preface sent with every request)
"""
import hmac
from typing import Optional

from chatrelay.core.config import get_settings
from chatrelay.core.errors import AuthorizationError, ValidationError
from chatrelay.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)


class SystemPolicy:
    """
    Holds the shared system prompt.

    Updates are visible to every user and only affect contexts assembled
    after the update. When ``admin_token`` is set, ``update`` requires it.
    """

    def __init__(self, prompt: str, admin_token: Optional[str] = None):
        self._prompt = prompt
        self._admin_token = admin_token or None

    @property
    def prompt(self) -> str:
        return self._prompt

    @property
    def protected(self) -> bool:
        return self._admin_token is not None

    def update(self, new_prompt: str, token: Optional[str] = None) -> None:
        """Replace the policy for all subsequent requests"""
        if self._admin_token is not None:
            if not token or not hmac.compare_digest(token, self._admin_token):
                raise AuthorizationError("Admin token required to change the system prompt")
        if not new_prompt or not new_prompt.strip():
            raise ValidationError("newPrompt is required")
        if new_prompt != self._prompt:
            logger.info("System prompt updated", extra={"prompt_chars": len(new_prompt)})
        self._prompt = new_prompt


# Global policy instance
_system_policy: Optional[SystemPolicy] = None


def get_system_policy() -> SystemPolicy:
    """Get global system policy, seeded from settings on first use"""
    global _system_policy
    if _system_policy is None:
        settings = get_settings()
        _system_policy = SystemPolicy(settings.system_prompt, settings.admin_token)
    return _system_policy
