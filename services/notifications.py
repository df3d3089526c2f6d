"""Уведомления участников торгов"""
import logging
from decimal import Decimal
from typing import Protocol, Union
from aiogram import Bot
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from database.models.user import User

logger = logging.getLogger(__name__)


class AuctionWon(BaseModel):
    """Пользователь выиграл лот"""
    model_config = ConfigDict(frozen=True)

    user_id: str
    item_title: str
    amount: Decimal
    event_id: str
    item_id: str


class AuctionLost(BaseModel):
    """Ставка пользователя не выиграла"""
    model_config = ConfigDict(frozen=True)

    user_id: str
    item_title: str
    event_id: str
    item_id: str


class BidCancelled(BaseModel):
    """Ставка отменена вместе с событием"""
    model_config = ConfigDict(frozen=True)

    user_id: str
    item_title: str
    event_id: str
    item_id: str


Notification = Union[AuctionWon, AuctionLost, BidCancelled]


class NotificationPort(Protocol):
    async def notify(self, notification: Notification) -> None: ...


async def notify_safely(notifier: NotificationPort, notification: Notification) -> bool:
    """Отправить уведомление, не прерывая расчеты при ошибке"""
    try:
        await notifier.notify(notification)
        return True
    except Exception as e:
        logger.error(
            f"Ошибка отправки уведомления {type(notification).__name__} "
            f"пользователю {notification.user_id}: {e}"
        )
        return False


def format_notification(notification: Notification) -> str:
    """Текст уведомления"""
    if isinstance(notification, AuctionWon):
        return (
            f"🎉 Вы выиграли лот <b>{notification.item_title}</b>!\n\n"
            f"Ваша ставка: ${notification.amount:,.2f}\n"
            "Оплатите покупку, чтобы завершить сделку."
        )
    if isinstance(notification, AuctionLost):
        return (
            f"Торги по лоту <b>{notification.item_title}</b> завершены.\n"
            "К сожалению, ваша ставка не стала выигрышной."
        )
    return (
        f"Событие с лотом <b>{notification.item_title}</b> отменено организатором.\n"
        "Ваша ставка аннулирована."
    )


class TelegramNotifier:
    """Доставка уведомлений через Telegram-бота"""

    def __init__(self, bot: Bot, session_maker: async_sessionmaker[AsyncSession]):
        self._bot = bot
        self._session_maker = session_maker

    async def notify(self, notification: Notification) -> None:
        async with self._session_maker() as session:
            result = await session.execute(
                select(User.telegram_id).where(User.id == notification.user_id)
            )
            telegram_id = result.scalar_one_or_none()

        if not telegram_id:
            logger.debug(f"У пользователя {notification.user_id} нет Telegram, уведомление пропущено")
            return

        await self._bot.send_message(
            telegram_id,
            format_notification(notification),
            parse_mode="HTML",
        )
