"""
Local State Cache

Typed facade over a KeyValueStore for the durable client-state keys the
engine reads and writes. Key names are part of the client's persisted
contract and must stay stable across releases.
"""

import json
import logging
from typing import Any

from ums_client.storage.ports import KeyValueStore

logger = logging.getLogger(__name__)


# Durable keys
CONVERSATION_ID = "conversationId"
LAST_CONVERSATION_ID = "lastConversationId"
CONSUMER_ID = "consumerId"
SECURE_FORMS = "secureForms"
EXT_JWT = "LP_EXT_JWT"
VISITOR_ID = "visitorId"
SESSION_ID = "sessionId"
FIRST_NAME = "firstName"
LAST_NAME = "lastName"
USE_ANONYMOUS = "useAnonymous"

# Lifetimes
CONVERSATION_TTL = 86400 * 30
CONSUMER_TTL = 86400 * 365


def conversation_participant_key(conversation_id: str) -> str:
    """Key mapping a conversation to the consumer participant that opened it."""
    return f"CONSUMER_ID{conversation_id}"


def consumer_conversation_key(consumer_id: str) -> str:
    """Stepped-up marker: the consumer has an authenticated conversation."""
    return f"CONSUMER_CONVERSATION_{consumer_id}"


class LocalStateCache:
    """
    Durable client state, one method pair per concern.

    Attributes:
        store: Underlying key/value store
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    # =========================================================================
    # Conversation
    # =========================================================================

    async def get_conversation_id(self) -> str | None:
        return await self.store.get(CONVERSATION_ID)

    async def set_conversation_id(self, conversation_id: str | None, consumer_id: str | None = None) -> None:
        """
        Persist (or clear) the active conversation.

        Also records which consumer participant owns the conversation and
        remembers it as the last conversation.
        """
        if conversation_id is None:
            await self.store.delete(CONVERSATION_ID)
            return
        await self.store.set(CONVERSATION_ID, conversation_id, ttl_seconds=CONVERSATION_TTL)
        await self.store.set(LAST_CONVERSATION_ID, conversation_id)
        if consumer_id:
            await self.store.set(
                conversation_participant_key(conversation_id), consumer_id, ttl_seconds=CONSUMER_TTL
            )

    async def get_last_conversation_id(self) -> str | None:
        return await self.store.get(LAST_CONVERSATION_ID)

    async def get_conversation_participant(self, conversation_id: str) -> str | None:
        return await self.store.get(conversation_participant_key(conversation_id))

    # =========================================================================
    # Consumer
    # =========================================================================

    async def get_consumer_id(self) -> str | None:
        return await self.store.get(CONSUMER_ID)

    async def set_consumer_id(self, consumer_id: str) -> None:
        await self.store.set(CONSUMER_ID, consumer_id, ttl_seconds=CONSUMER_TTL)

    async def get_consumer_conversation(self, consumer_id: str) -> str | None:
        return await self.store.get(consumer_conversation_key(consumer_id))

    async def set_consumer_conversation(self, consumer_id: str, conversation_id: str) -> None:
        await self.store.set(consumer_conversation_key(consumer_id), conversation_id)

    async def get_profile(self) -> dict[str, Any]:
        """Consumer's personal details and anonymity preference."""
        use_anonymous = await self.store.get(USE_ANONYMOUS)
        return {
            "first_name": await self.store.get(FIRST_NAME),
            "last_name": await self.store.get(LAST_NAME),
            "use_anonymous": (use_anonymous or "").lower() == "true",
        }

    async def set_profile(
        self,
        first_name: str | None = None,
        last_name: str | None = None,
        use_anonymous: bool | None = None,
    ) -> None:
        if first_name is not None:
            await self.store.set(FIRST_NAME, first_name)
        if last_name is not None:
            await self.store.set(LAST_NAME, last_name)
        if use_anonymous is not None:
            await self.store.set(USE_ANONYMOUS, "true" if use_anonymous else "false")

    # =========================================================================
    # Tokens
    # =========================================================================

    async def get_ext_jwt(self) -> str | None:
        return await self.store.get(EXT_JWT)

    async def set_ext_jwt(self, token: str) -> None:
        await self.store.set(EXT_JWT, token)

    async def clear_ext_jwt(self) -> None:
        await self.store.delete(EXT_JWT)

    # =========================================================================
    # Tracking Identity
    # =========================================================================

    async def get_session(self) -> tuple[str | None, str | None]:
        """Returns (visitor_id, session_id)."""
        return await self.store.get(VISITOR_ID), await self.store.get(SESSION_ID)

    async def set_session(self, visitor_id: str, session_id: str) -> None:
        await self.store.set(VISITOR_ID, visitor_id)
        await self.store.set(SESSION_ID, session_id)

    # =========================================================================
    # Secure Forms
    # =========================================================================

    async def get_secure_forms(self) -> dict[str, dict[str, Any]]:
        """Pending secure form invitations keyed by invitation id."""
        raw = await self.store.get(SECURE_FORMS)
        if not raw:
            return {}
        try:
            forms = json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable secure form cache")
            return {}
        return forms if isinstance(forms, dict) else {}

    async def set_secure_forms(self, forms: dict[str, dict[str, Any]]) -> None:
        await self.store.set(SECURE_FORMS, json.dumps(forms))

    async def clear_secure_forms(self) -> None:
        await self.store.delete(SECURE_FORMS)
