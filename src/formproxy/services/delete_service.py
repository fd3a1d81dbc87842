from __future__ import annotations

from dataclasses import dataclass

from formproxy.errors import AuthorizationError, RemoteForbiddenError, RemoteNotFoundError, TransportError
from formproxy.models import ProxiedMessage
from formproxy.ports import ChannelProxyPort, LinkageStore
from formproxy.services.logger_service import LoggerService

REASON_NOT_FOUND = "not found"
REASON_UNAUTHORIZED = "unauthorized"
REASON_FORBIDDEN = "insufficient permissions"


@dataclass(frozen=True)
class DeleteResult:
    ok: bool
    reason: str | None = None


class DeleteService:
    def __init__(self, linkages: LinkageStore, logger: LoggerService) -> None:
        self.linkages = linkages
        self.logger = logger

    async def delete_proxied(
        self,
        channel_port: ChannelProxyPort,
        message_id: int,
        actor_user_id: int,
        webhook_token: str | None = None,
        *,
        can_manage_messages: bool = False,
    ) -> DeleteResult:
        row = await self.linkages.find_by_message_id(message_id)
        if row is None:
            return DeleteResult(ok=False, reason=REASON_NOT_FOUND)

        if row.user_id != actor_user_id and not can_manage_messages:
            self.logger.log("delete.denied", actor_id=actor_user_id, owner_id=row.user_id, message_id=message_id)
            return DeleteResult(ok=False, reason=REASON_UNAUTHORIZED)

        token = webhook_token or row.webhook_token or None
        try:
            await channel_port.delete(row.webhook_id, token, row.message_id)
        except RemoteNotFoundError:
            self.logger.log("delete.already_gone", actor_id=actor_user_id, message_id=message_id)
        except RemoteForbiddenError:
            self.logger.log("delete.forbidden", actor_id=actor_user_id, message_id=message_id, channel_id=row.channel_id)
            return DeleteResult(ok=False, reason=REASON_FORBIDDEN)
        except TransportError as exc:
            self.logger.log("delete.failed", actor_id=actor_user_id, message_id=message_id, error=str(exc)[:300])
            return DeleteResult(ok=False, reason=f"deletion failed: {exc}")

        await self.linkages.delete_by_row_id(row.id)
        self.logger.log(
            "delete.success",
            actor_id=actor_user_id,
            owner_id=row.user_id,
            form_id=row.form_id,
            guild_id=row.guild_id,
            channel_id=row.channel_id,
            message_id=row.message_id,
        )
        return DeleteResult(ok=True)

    async def who_sent(self, message_id: int, actor_user_id: int, *, can_manage_messages: bool = False) -> ProxiedMessage | None:
        """Linkage row behind a proxied message, for moderators. None when the message was not proxied."""
        if not can_manage_messages:
            raise AuthorizationError("You do not have permission to use this command.")
        row = await self.linkages.find_by_message_id(message_id)
        self.logger.log("audit.who_sent", actor_id=actor_user_id, message_id=message_id, found=row is not None)
        return row
