"""FastAPI dependencies wiring services to their collaborators."""

import hmac
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from convocrm.domain.services.attachment_service import ChatAttachmentFetcher
from convocrm.domain.services.automation_dispatcher import AutomationDispatcher
from convocrm.domain.services.chat_update_service import ChatUpdateService
from convocrm.domain.services.delivery_service import DeliveryService
from convocrm.domain.services.identity_resolver import IdentityResolver
from convocrm.domain.services.ingestion_service import MessageIngestionService
from convocrm.domain.services.internal_message_service import InternalMessageService
from convocrm.domain.services.order_status_service import OrderStatusService
from convocrm.domain.services.partner_sync_service import PartnerSyncService
from convocrm.domain.services.timeline_service import TimelineService
from convocrm.infrastructure.cache import InMemoryTTLCache, QueryCache, RedisQueryCache
from convocrm.infrastructure.object_storage import ObjectStorage
from convocrm.infrastructure.partner_client import PartnerClient
from convocrm.infrastructure.redis import redis_client
from convocrm.infrastructure.telegram_client import TelegramClient
from convocrm.persistence.database import AsyncSessionLocal, get_db
from convocrm.settings import settings

_memory_cache = InMemoryTTLCache()


def get_cache() -> QueryCache:
    """Redis-backed cache when Redis is up, else the process-local one."""
    if redis_client.enabled:
        return RedisQueryCache(redis_client)
    return _memory_cache


def get_dispatcher() -> AutomationDispatcher:
    return AutomationDispatcher(AsyncSessionLocal)


def get_telegram_client() -> TelegramClient:
    return TelegramClient()


def get_partner_client() -> PartnerClient:
    return PartnerClient()


def get_object_storage() -> ObjectStorage:
    return ObjectStorage()


DbSession = Annotated[AsyncSession, Depends(get_db)]
Cache = Annotated[QueryCache, Depends(get_cache)]
Dispatcher = Annotated[AutomationDispatcher, Depends(get_dispatcher)]
Partner = Annotated[PartnerClient, Depends(get_partner_client)]
Storage = Annotated[ObjectStorage, Depends(get_object_storage)]
Telegram = Annotated[TelegramClient, Depends(get_telegram_client)]


def get_ingestion_service(
    db: DbSession,
    dispatcher: Dispatcher,
    cache: Cache,
    partner: Partner,
    storage: Storage,
    telegram: Telegram,
) -> MessageIngestionService:
    resolver = IdentityResolver(db, dispatcher=dispatcher, partner_client=partner)
    return MessageIngestionService(
        db,
        dispatcher=dispatcher,
        resolver=resolver,
        attachment_fetcher=ChatAttachmentFetcher(telegram, storage),
        cache=cache,
    )


def get_chat_update_service(
    ingestion: Annotated[MessageIngestionService, Depends(get_ingestion_service)],
    telegram: Telegram,
) -> ChatUpdateService:
    return ChatUpdateService(ingestion, telegram)


def get_timeline_service(db: DbSession, cache: Cache) -> TimelineService:
    return TimelineService(db, cache=cache)


def get_delivery_service(
    db: DbSession, cache: Cache, storage: Storage, telegram: Telegram
) -> DeliveryService:
    return DeliveryService(db, telegram, storage=storage, cache=cache)


def get_order_status_service(
    db: DbSession, dispatcher: Dispatcher, partner: Partner, cache: Cache
) -> OrderStatusService:
    return OrderStatusService(db, dispatcher=dispatcher, partner_client=partner, cache=cache)


def get_internal_message_service(db: DbSession, cache: Cache) -> InternalMessageService:
    return InternalMessageService(db, cache=cache)


def get_partner_sync_service(
    db: DbSession, dispatcher: Dispatcher, partner: Partner, cache: Cache
) -> PartnerSyncService:
    return PartnerSyncService(db, dispatcher=dispatcher, partner_client=partner, cache=cache)


def _matches(expected: str, provided: str | None) -> bool:
    return provided is not None and hmac.compare_digest(expected.encode(), provided.encode())


async def verify_partner_webhook(
    x_webhook_token: Annotated[str | None, Header()] = None,
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Check the shared secret on partner webhooks when one is configured."""
    expected = settings.partner_webhook_secret
    if not expected:
        return
    bearer = authorization[7:] if authorization and authorization.startswith("Bearer ") else authorization
    if not (_matches(expected, x_webhook_token) or _matches(expected, bearer)):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def verify_telegram_webhook(
    x_telegram_bot_api_secret_token: Annotated[str | None, Header()] = None,
) -> None:
    """Check Telegram's secret-token header when a secret is configured."""
    expected = settings.telegram_webhook_secret
    if expected and not _matches(expected, x_telegram_bot_api_secret_token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
