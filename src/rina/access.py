from __future__ import annotations

from collections.abc import Collection

from .logging import get_logger
from .settings import AccessSettings
from .transport import StoredMessage, Thread

logger = get_logger(__name__)


def is_id_allowed(value: str | None, allowed: Collection[str]) -> bool:
    if not allowed:
        return True
    if not value:
        return False
    return value in allowed


class AccessPolicy:
    def __init__(self, settings: AccessSettings | None = None) -> None:
        self._settings = settings or AccessSettings()

    def users_for(self, platform: str) -> frozenset[str]:
        scoped = self._settings.platform_user_ids.get(platform.lower())
        return frozenset(scoped or self._settings.user_ids)

    def chats_for(self, platform: str) -> frozenset[str]:
        scoped = self._settings.platform_chat_ids.get(platform.lower())
        return frozenset(scoped or self._settings.chat_ids)

    def allows(self, thread: Thread, message: StoredMessage) -> bool:
        users = self.users_for(thread.platform)
        chats = self.chats_for(thread.platform)
        user_ok = is_id_allowed(message.author.user_id, users)
        chat_ok = is_id_allowed(thread.id, chats) or (
            bool(chats) and thread.channel_id in chats
        )
        if not (user_ok and chat_ok):
            logger.info(
                "access.denied",
                platform=thread.platform,
                thread_id=thread.id,
                user_id=message.author.user_id,
                user_ok=user_ok,
                chat_ok=chat_ok,
            )
            return False
        return True
