"""
Image relay: optional context folding and prompt rewriting before generation
"""
from typing import List, Optional, Sequence

from chatrelay.core.config import Settings, get_settings
from chatrelay.core.conversation_store import (ConversationStore, Turn,
                                               get_conversation_store)
from chatrelay.core.errors import ValidationError
from chatrelay.core.logging_config import LoggingConfig
from chatrelay.core.metrics import images_generated_total
from chatrelay.core.provider_client import ProviderClient, get_provider_client

logger = LoggingConfig.get_logger(__name__)

DATA_URL_PREFIX = "data:image/png;base64,"

REWRITE_INSTRUCTION = (
    "You turn short image requests into a single detailed image description: "
    "subject, setting, composition, lighting, style and mood. Reply with the "
    "description only, no preamble."
)


def fold_context(prompt: str, turns: Sequence[Turn]) -> str:
    """Append recent conversation text to an image prompt for continuity"""
    lines = [f"{turn.role}: {turn.text}" for turn in turns if turn.text.strip()]
    if not lines:
        return prompt
    return prompt + "\n\nConversation so far, for continuity:\n" + "\n".join(lines)


class ImageService:
    """Generates images for a prompt, returning PNG data URLs"""

    def __init__(
        self,
        client: ProviderClient,
        store: ConversationStore,
        settings: Optional[Settings] = None,
    ):
        self.client = client
        self.store = store
        self.settings = settings or get_settings()

    async def rewrite_prompt(self, prompt: str) -> str:
        """
        Ask the chat model for a more detailed description of ``prompt``.

        Best effort: on any failure the original prompt is returned unchanged.
        """
        messages = [
            {"role": "system", "content": REWRITE_INSTRUCTION},
            {"role": "user", "content": prompt},
        ]
        try:
            rewritten = await self.client.complete(messages, max_tokens=300)
        except Exception as e:
            logger.warning(f"Prompt rewrite failed, using original prompt: {e}", exc_info=True)
            return prompt
        rewritten = (rewritten or "").strip()
        if not rewritten:
            logger.warning("Prompt rewrite returned nothing, using original prompt")
            return prompt
        return rewritten

    def _context_turns(self, user_id: Optional[str], history: Optional[List[Turn]]) -> List[Turn]:
        limit = self.settings.image_context_turns
        if limit <= 0:
            return []
        if history is not None:
            turns = history
        elif user_id:
            turns = self.store.peek(user_id)
        else:
            turns = []
        return list(turns)[-limit:]

    async def generate(
        self,
        prompt: Optional[str],
        size: Optional[str] = None,
        n: Optional[int] = None,
        user_id: Optional[str] = None,
        history: Optional[List[Turn]] = None,
        enhance: Optional[bool] = None,
    ) -> List[str]:
        """
        Generate ``n`` images and return them as data URLs.

        Raises:
            ValidationError: prompt missing or n out of range
            UpstreamError: the provider rejected the image request
        """
        if prompt is None or not prompt.strip():
            raise ValidationError("prompt is required")
        count = 1 if n is None else n
        if count < 1 or count > self.settings.image_max_count:
            raise ValidationError(
                f"n must be between 1 and {self.settings.image_max_count}",
                details={"n": n}
            )

        outbound = fold_context(prompt, self._context_turns(user_id, history))
        use_rewrite = self.settings.image_prompt_rewrite if enhance is None else enhance
        if use_rewrite:
            outbound = await self.rewrite_prompt(outbound)

        logger.info(
            "Requesting images",
            extra={"user_id": user_id, "count": count, "prompt_chars": len(outbound)}
        )
        payloads = await self.client.generate_images(outbound, size or self.settings.image_size, count)
        images_generated_total.labels(model=self.settings.image_model).inc(len(payloads))
        return [DATA_URL_PREFIX + payload for payload in payloads]


def get_image_service() -> ImageService:
    """Image service wired to the process-wide singletons"""
    return ImageService(client=get_provider_client(), store=get_conversation_store())
