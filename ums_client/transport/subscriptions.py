"""
Subscription Registry

Tracks which subscriptions were already requested on the current socket so
re-delivered conversation changes never produce duplicate subscribe frames.
The registry lives as long as one socket: it is cleared on close and on
socket loss, since a new socket starts with no server-side subscriptions.
"""

import logging

logger = logging.getLogger(__name__)


# Key for the account-wide conversation subscription
CONVERSATIONS_KEY = "conversations"


def dialog_key(dialog_id: str) -> str:
    return f"dialog:{dialog_id}"


def survey_key(dialog_id: str) -> str:
    return f"survey:{dialog_id}"


class SubscriptionRegistry:
    """Set of subscription keys already requested."""

    def __init__(self):
        self._keys: set[str] = set()

    def add(self, key: str) -> bool:
        """
        Record a subscription.

        Returns:
            True if newly added, False if it was already registered
        """
        if key in self._keys:
            return False
        self._keys.add(key)
        return True

    def discard(self, key: str) -> None:
        self._keys.discard(key)

    def clear(self) -> None:
        if self._keys:
            logger.debug(f"Clearing {len(self._keys)} subscriptions")
        self._keys.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)
