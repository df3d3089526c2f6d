"""Точка входа: бот администраторов и планировщик расчетов"""
import asyncio
import logging
from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from config import Settings
from database.connection import create_session_maker, init_models
from bot.handlers import admin
from bot.middlewares.database import DatabaseMiddleware
from services.chargebacks import ChargebackService
from services.compliance import ComplianceGateway
from services.fraud import FraudScorer
from services.notifications import TelegramNotifier
from services.payments import PaymentService
from services.payouts import PayoutService
from services.processor import StripeProcessor
from services.reserves import ReserveService
from services.scheduler import SettlementScheduler
from services.settlement import SettlementService
from services.trust import TrustManager
from services.webhooks import WebhookHandler

# Настройка логирования
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main():
    """Запуск бота и планировщика"""
    settings = Settings()
    engine, session_maker = create_session_maker(settings)
    await init_models(engine)

    bot = Bot(
        token=settings.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML)
    )

    # Сервисы собираются один раз и передаются в обработчики через диспетчер
    processor = StripeProcessor(settings)
    notifier = TelegramNotifier(bot, session_maker)
    trust = TrustManager(settings)
    compliance = ComplianceGateway()
    settlement = SettlementService(settings, notifier)
    payouts = PayoutService(settings, processor, FraudScorer(settings), trust, compliance)
    reserves = ReserveService(processor)
    chargebacks = ChargebackService(trust)
    payments = PaymentService(settings, processor, notifier)
    webhooks = WebhookHandler(settings, payments, chargebacks, payouts)

    # payments и webhooks - точки входа для HTTP-эндпоинта вебхуков процессора,
    # команды бота их не вызывают
    dp = Dispatcher(
        settings=settings,
        settlement=settlement,
        payouts=payouts,
        reserves=reserves,
        payments=payments,
        webhooks=webhooks,
    )

    # Регистрируем middleware
    dp.message.middleware(DatabaseMiddleware(session_maker))
    dp.callback_query.middleware(DatabaseMiddleware(session_maker))

    dp.include_router(admin.router)

    scheduler = SettlementScheduler(settings, session_maker, settlement, payouts, reserves)
    scheduler.start()

    logger.info("Бот запущен")

    try:
        await dp.start_polling(bot)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
