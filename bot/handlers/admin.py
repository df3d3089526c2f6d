"""Обработчики для админов: проверка выплат и ручной запуск расчетов"""
from aiogram import Router, F
from aiogram.types import Message, CallbackQuery, InlineKeyboardButton
from aiogram.filters import Command, CommandObject
from aiogram.utils.keyboard import InlineKeyboardBuilder
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from config import Settings
from database.models.user import User
from services.dto import PayoutSummary
from services.errors import NotFoundError
from services.payouts import PayoutService
from services.reserves import ReserveService
import logging

logger = logging.getLogger(__name__)

router = Router()


async def is_admin(user_id: int, session: AsyncSession, settings: Settings) -> bool:
    """Проверить, является ли пользователь администратором платформы"""
    # Администраторы из .env
    if user_id in settings.admin_ids_list:
        return True

    result = await session.execute(
        select(User).where(
            User.telegram_id == user_id,
            User.is_admin == True
        )
    )
    return result.scalar_one_or_none() is not None


async def reviewer_id(user_id: int, session: AsyncSession) -> str:
    """Идентификатор проверяющего для журнала выплат"""
    result = await session.execute(select(User.id).where(User.telegram_id == user_id))
    return result.scalar_one_or_none() or f"tg:{user_id}"


def format_payout(payout: PayoutSummary) -> str:
    flags = ", ".join(payout.flags) if payout.flags else "нет"
    return (
        f"<b>{payout.event_name}</b> ({payout.organization_name})\n"
        f"ID: <code>{payout.id}</code>\n"
        f"Сумма продаж: ${payout.gross_amount:,.2f}\n"
        f"К выплате: ${payout.net_payout:,.2f} (резерв ${payout.reserve_amount:,.2f})\n"
        f"Флаги: {flags}"
    )


@router.message(Command("payouts_review"))
async def cmd_payouts_review(message: Message, session: AsyncSession, settings: Settings, payouts: PayoutService):
    """Показать выплаты, ожидающие проверки"""
    if not await is_admin(message.from_user.id, session, settings):
        await message.answer("У вас нет прав администратора")
        return

    held = await payouts.get_payouts_requiring_review(session)
    if not held:
        await message.answer("Нет выплат, ожидающих проверки")
        return

    for payout in held:
        builder = InlineKeyboardBuilder()
        builder.add(InlineKeyboardButton(
            text="✅ Одобрить",
            callback_data=f"payout:approve:{payout.id}"
        ))
        await message.answer(format_payout(payout), reply_markup=builder.as_markup())


@router.message(Command("approve_payout"))
async def cmd_approve_payout(
    message: Message,
    command: CommandObject,
    session: AsyncSession,
    settings: Settings,
    payouts: PayoutService
):
    """/approve_payout <id> [заметка]"""
    if not await is_admin(message.from_user.id, session, settings):
        await message.answer("У вас нет прав администратора")
        return

    if not command.args:
        await message.answer("Использование: /approve_payout <id> [заметка]")
        return

    parts = command.args.split(maxsplit=1)
    notes = parts[1] if len(parts) > 1 else None
    try:
        approved = await payouts.approve_payout(
            session, parts[0], await reviewer_id(message.from_user.id, session), notes
        )
    except NotFoundError:
        await message.answer("Выплата не найдена")
        return

    if approved:
        await message.answer("✅ Выплата одобрена и вернется в очередь")
    else:
        await message.answer("Выплата не удержана, одобрять нечего")


@router.callback_query(F.data.startswith("payout:approve:"))
async def approve_payout_callback(
    callback: CallbackQuery,
    session: AsyncSession,
    settings: Settings,
    payouts: PayoutService
):
    if not await is_admin(callback.from_user.id, session, settings):
        await callback.answer("У вас нет прав администратора", show_alert=True)
        return

    payout_id = callback.data.split(":", 2)[2]
    try:
        approved = await payouts.approve_payout(
            session, payout_id, await reviewer_id(callback.from_user.id, session)
        )
    except NotFoundError:
        await callback.answer("Выплата не найдена", show_alert=True)
        return

    await callback.answer("Одобрено" if approved else "Выплата уже обработана")
    if approved:
        await callback.message.edit_reply_markup(reply_markup=None)


@router.message(Command("reject_payout"))
async def cmd_reject_payout(
    message: Message,
    command: CommandObject,
    session: AsyncSession,
    settings: Settings,
    payouts: PayoutService
):
    """/reject_payout <id> <причина>"""
    if not await is_admin(message.from_user.id, session, settings):
        await message.answer("У вас нет прав администратора")
        return

    parts = (command.args or "").split(maxsplit=1)
    if len(parts) < 2:
        await message.answer("Использование: /reject_payout <id> <причина>")
        return

    try:
        await payouts.reject_payout(
            session, parts[0], await reviewer_id(message.from_user.id, session), parts[1]
        )
    except NotFoundError:
        await message.answer("Выплата не найдена")
        return

    await message.answer("❌ Выплата отклонена")


@router.message(Command("run_payouts"))
async def cmd_run_payouts(message: Message, session: AsyncSession, settings: Settings, payouts: PayoutService):
    """Запустить обработку выплат вручную"""
    if not await is_admin(message.from_user.id, session, settings):
        await message.answer("У вас нет прав администратора")
        return

    result = await payouts.process_eligible_payouts(session)
    text = (
        "💸 Обработка выплат завершена\n\n"
        f"Выполнено: {result.processed}\n"
        f"Удержано: {result.held}\n"
        f"Ошибок: {len(result.errors)}"
    )
    if result.errors:
        text += "\n\n" + "\n".join(result.errors[:10])
    await message.answer(text, parse_mode=None)


@router.message(Command("run_reserves"))
async def cmd_run_reserves(message: Message, session: AsyncSession, settings: Settings, reserves: ReserveService):
    """Запустить освобождение резервов вручную"""
    if not await is_admin(message.from_user.id, session, settings):
        await message.answer("У вас нет прав администратора")
        return

    result = await reserves.process_reserve_releases(session)
    text = (
        "🏦 Обработка резервов завершена\n\n"
        f"Освобождено: {result.released}\n"
        f"Списано: {result.forfeited}\n"
        f"Ошибок: {len(result.errors)}"
    )
    if result.errors:
        text += "\n\n" + "\n".join(result.errors[:10])
    await message.answer(text, parse_mode=None)
