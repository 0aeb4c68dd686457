from __future__ import annotations

import logging
from typing import AsyncIterator, Callable, Optional, Protocol, Sequence, Tuple

from chat.core.markup import normalize
from chat.core.memory import ConversationStore
from chat.errors import BackendError, EmptyPromptError
from chat.models import PartialReply, Turn, TurnResult


logger = logging.getLogger("chatrelay.relay")


class CompletionClient(Protocol):
    def stream(self, transcript: Sequence[Turn]) -> AsyncIterator[PartialReply]:
        ...


async def accumulate(stream: AsyncIterator[PartialReply]) -> Tuple[str, int]:
    """Concatenate fragments in delivery order. Returns (text, fragment count)."""
    parts = []
    try:
        async for partial in stream:
            parts.append(partial.content)
            if partial.done:
                break
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()
    return "".join(parts), len(parts)


class ChatRelay:
    """Runs one chat exchange against a session's transcript.

    The user turn is recorded before the backend is called and is kept when
    the backend fails; the assistant turn is only recorded on success.
    """

    def __init__(
        self,
        store: ConversationStore,
        client: CompletionClient,
        normalizer: Callable[[str], str] = normalize,
    ) -> None:
        self.store = store
        self.client = client
        self.normalizer = normalizer

    async def exchange(self, session_id: str, prompt: Optional[str]) -> TurnResult:
        if not prompt or not prompt.strip():
            raise EmptyPromptError("Prompt must not be empty")

        async with self.store.session_lock(session_id):
            self.store.append_turn(session_id, Turn(role="user", content=prompt))
            transcript = self.store.get(session_id)

            try:
                reply_raw, fragments = await accumulate(self.client.stream(transcript))
            except BackendError as exc:
                logger.warning(
                    "Backend failed for session=%s turns=%s: %s",
                    session_id,
                    len(transcript),
                    exc,
                )
                raise

            reply_html = self.normalizer(reply_raw)
            self.store.append_turn(session_id, Turn(role="assistant", content=reply_html))

        logger.info(
            "Exchange complete: session=%s turns=%s fragments=%s reply_chars=%s",
            session_id,
            len(transcript) + 1,
            fragments,
            len(reply_raw),
        )
        return TurnResult(
            session_id=session_id,
            reply_raw=reply_raw,
            reply_html=reply_html,
            fragments=fragments,
        )

    async def reset(self, session_id: str) -> None:
        """Start a new conversation once any in-flight exchange has finished."""
        async with self.store.session_lock(session_id):
            self.store.clear(session_id)
        logger.info("Conversation reset: session=%s", session_id)
