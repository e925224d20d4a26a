"""
Notification fan-out.

create_notification() persists a row and queues a push to the receiver's live
connections on the notifications channel. The push is sent after the request
commits and is fire-and-forget: an offline receiver or a broken socket never
fails the triggering action, the row is what the client fetches later.
"""
import logging
from typing import Optional

from opentelemetry import trace
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chirp.errors import NotFoundError
from chirp.models import Notification, NotificationType
from chirp.realtime.gateway import RealtimeGateway
from chirp.schemas import CountResponse, NotificationPage, NotificationResponse, PageMeta
from chirp.services.base import clamp_page
from chirp.telemetry import NOTIFICATIONS_CREATED_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

NOTIFICATION_EVENT = "notification"


class NotificationService:
    def __init__(self, db: AsyncSession, gateway: RealtimeGateway) -> None:
        self.db = db
        self.gateway = gateway

    async def create_notification(
        self,
        type: NotificationType,
        receiver_id: str,
        sender_id: str,
        tweet_id: Optional[str] = None,
        comment_id: Optional[str] = None,
    ) -> Optional[Notification]:
        """Returns None (nothing persisted) when the actor is the receiver."""
        if receiver_id == sender_id:
            return None

        with tracer.start_as_current_span("create_notification") as span:
            span.set_attribute("notification.type", type.value)
            span.set_attribute("notification.receiver_id", receiver_id)

            notification = Notification(
                type=type,
                sender_id=sender_id,
                receiver_id=receiver_id,
                tweet_id=tweet_id,
                comment_id=comment_id,
            )
            self.db.add(notification)
            await self.db.flush()
            notification = await self._load(notification.notification_id)

            NOTIFICATIONS_CREATED_TOTAL.labels(type=type.value).inc()
            logger.info(
                "%s notification %s → %s", type.value, sender_id, receiver_id
            )

            payload = NotificationResponse.from_model(notification).to_json()
            self.gateway.push_after_commit(self.db, receiver_id, NOTIFICATION_EVENT, payload)
            return notification

    async def _load(self, notification_id: str) -> Notification:
        # populate_existing so sender / tweet / comment are loaded after flush
        result = await self.db.execute(
            select(Notification)
            .where(Notification.notification_id == notification_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def list_notifications(
        self, user_id: str, page: int = 1, limit: int = 20
    ) -> NotificationPage:
        page, limit = clamp_page(page, limit)
        total = (
            await self.db.execute(
                select(func.count())
                .select_from(Notification)
                .where(Notification.receiver_id == user_id)
            )
        ).scalar_one()

        result = await self.db.execute(
            select(Notification)
            .where(Notification.receiver_id == user_id)
            .order_by(Notification.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        notifications = result.scalars().unique().all()
        return NotificationPage(
            notifications=[NotificationResponse.from_model(n) for n in notifications],
            meta=PageMeta.build(total, page, limit),
        )

    async def mark_as_read(self, user_id: str, notification_id: str) -> NotificationResponse:
        result = await self.db.execute(
            select(Notification).where(
                Notification.notification_id == notification_id,
                Notification.receiver_id == user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotFoundError("Notification not found")

        notification.read = True
        await self.db.flush()
        return NotificationResponse.from_model(notification)

    async def mark_all_as_read(self, user_id: str) -> CountResponse:
        result = await self.db.execute(
            update(Notification)
            .where(Notification.receiver_id == user_id, Notification.read.is_(False))
            .values(read=True)
            .execution_options(synchronize_session="fetch")
        )
        logger.info("Marked %d notifications read for user %s", result.rowcount, user_id)
        return CountResponse(count=result.rowcount)

    async def get_unread_count(self, user_id: str) -> CountResponse:
        result = await self.db.execute(
            select(func.count())
            .select_from(Notification)
            .where(Notification.receiver_id == user_id, Notification.read.is_(False))
        )
        return CountResponse(count=result.scalar_one())
