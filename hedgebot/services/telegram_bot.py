"""Telegram bot for hedge bot notifications and remote control."""

import asyncio
import logging
import threading
from typing import Optional

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import (
    Application,
    CommandHandler,
    CallbackQueryHandler,
    ContextTypes,
)

from hedgebot.config import settings

logger = logging.getLogger(__name__)

_bot_instance: Optional["TelegramBot"] = None


def notify(message: str):
    """Send a Telegram notification (fire-and-forget)."""
    logger.debug(f"notify: {message}")
    bot = get_bot()
    if bot is None or bot._loop is None:
        return
    try:
        asyncio.run_coroutine_threadsafe(bot.send_notification(message), bot._loop)
    except RuntimeError as e:
        logger.warning(f"Telegram notification dropped: {e}")


async def _on_runtime_loop(coro):
    """Run a coroutine on the bot runtime's event loop and wait for the result."""
    from hedgebot.engine.runtime import get_runtime

    runtime = get_runtime()
    loop = runtime.loop if runtime else None
    if loop is None or loop is asyncio.get_running_loop():
        return await coro
    return await asyncio.wrap_future(asyncio.run_coroutine_threadsafe(coro, loop))


def _fmt_trade(label: str, trade) -> str:
    if trade is None:
        return f"{label}: none"
    return (
        f"{label}: {trade.side.value} @ {trade.open_price:.2f} "
        f"(breakthrough {trade.breakthrough_price:.2f})"
    )


class TelegramBot:
    """Telegram bot running in a background thread with its own event loop."""

    def __init__(self, token: str, chat_ids: list[int]):
        self.token = token
        self.chat_ids = set(chat_ids)
        self._app: Optional[Application] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _is_authorized(self, user_id: int) -> bool:
        return user_id in self.chat_ids

    async def _check_auth(self, update: Update) -> bool:
        if not update.effective_user or not self._is_authorized(update.effective_user.id):
            if update.message:
                await update.message.reply_text("Unauthorized.")
            return False
        return True

    async def _cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        from hedgebot.engine.runtime import get_runtime

        runtime = get_runtime()
        if runtime is None:
            await update.message.reply_text("Bot runtime not initialized.")
            return

        state = runtime.state
        price = runtime.feed.get_current_price()
        lines = [
            f"Bot: {'running' if runtime.is_running else 'stopped'} ({runtime.settings.symbol})",
            f"Price: {price:.2f}" if price else "Price: n/a",
            _fmt_trade("Main", state.main_trade),
            _fmt_trade("Hedge", state.hedge_trade),
        ]
        if state.main_boundary:
            lines.append(f"Main boundary: {state.main_boundary.boundary_price:.2f}")
        if state.hedge_reentry_boundary:
            lines.append(f"Hedge re-entry: {state.hedge_reentry_boundary.boundary_price:.2f}")
        if runtime.fatal_error:
            lines.append(f"Halted: {runtime.fatal_error}")
        await update.message.reply_text("\n".join(lines))

    async def _cmd_pnl(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        from hedgebot.engine.runtime import get_runtime

        runtime = get_runtime()
        if runtime is None:
            await update.message.reply_text("Bot runtime not initialized.")
            return

        log = runtime.state.profit_loss_log
        lines = [f"Realized PnL: {runtime.state.realized_pnl:+.2f} over {len(log)} closes"]
        for entry in log[-5:]:
            lines.append(f"{entry.role.value}: {entry.amount:+.2f}")
        await update.message.reply_text("\n".join(lines))

    async def _cmd_start_bot(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        from hedgebot.engine.runtime import get_runtime

        runtime = get_runtime()
        if runtime is None:
            await update.message.reply_text("Bot runtime not initialized.")
            return
        try:
            started = await _on_runtime_loop(runtime.start())
        except Exception as e:
            await update.message.reply_text(f"Start failed: {e}")
            return
        await update.message.reply_text("Bot started." if started else "Bot already running.")

    async def _cmd_stop_bot(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        from hedgebot.engine.runtime import get_runtime

        runtime = get_runtime()
        if runtime is None:
            await update.message.reply_text("Bot runtime not initialized.")
            return
        stopped = await _on_runtime_loop(runtime.stop())
        await update.message.reply_text("Bot stopped." if stopped else "Bot was not running.")

    async def _cmd_close_all(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        keyboard = InlineKeyboardMarkup([
            [
                InlineKeyboardButton("Yes, stop and close", callback_data="confirm_close_all"),
                InlineKeyboardButton("Cancel", callback_data="cancel"),
            ]
        ])
        await update.message.reply_text(
            "Stop the bot and close main and hedge positions?",
            reply_markup=keyboard,
        )

    async def _handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        query = update.callback_query
        if not query or not query.from_user or not self._is_authorized(query.from_user.id):
            return

        await query.answer()

        if query.data == "cancel":
            await query.edit_message_text("Cancelled.")
            return

        from hedgebot.engine.runtime import get_runtime
        from hedgebot.services.emergency_stop import run_emergency_stop

        if query.data == "confirm_close_all":
            runtime = get_runtime()
            if runtime is None:
                await query.edit_message_text("Bot runtime not initialized.")
                return
            await query.edit_message_text("Emergency stop in progress...")
            result = await _on_runtime_loop(run_emergency_stop(runtime, close_positions=True))
            errors = f"\nErrors: {len(result['errors'])}" if result["errors"] else ""
            await query.edit_message_text(
                f"Bot stopped. Closed {result['positions_closed']} positions.{errors}"
            )

    async def send_notification(self, message: str):
        """Send a message to all whitelisted chat IDs."""
        if not self._app or not self._app.bot:
            return
        for chat_id in self.chat_ids:
            try:
                await self._app.bot.send_message(chat_id=chat_id, text=message)
            except Exception as e:
                logger.warning(f"Failed to send Telegram notification to {chat_id}: {e}")

    def _run_bot(self):
        """Run the bot in a background thread with its own event loop."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        self._app = (
            Application.builder()
            .token(self.token)
            .build()
        )

        self._app.add_handler(CommandHandler("status", self._cmd_status))
        self._app.add_handler(CommandHandler("pnl", self._cmd_pnl))
        self._app.add_handler(CommandHandler("start_bot", self._cmd_start_bot))
        self._app.add_handler(CommandHandler("stop_bot", self._cmd_stop_bot))
        self._app.add_handler(CommandHandler("close_all", self._cmd_close_all))
        self._app.add_handler(CallbackQueryHandler(self._handle_callback))

        logger.info("Telegram bot starting...")
        self._loop.run_until_complete(self._app.initialize())
        self._loop.run_until_complete(self._app.start())
        self._loop.run_until_complete(self._app.updater.start_polling())
        self._loop.run_forever()

    def start(self):
        self._thread = threading.Thread(target=self._run_bot, daemon=True)
        self._thread.start()

    def stop(self):
        if self._loop and self._app:
            async def _shutdown():
                await self._app.updater.stop()
                await self._app.stop()
                await self._app.shutdown()

            asyncio.run_coroutine_threadsafe(_shutdown(), self._loop).result(timeout=10)
            self._loop.call_soon_threadsafe(self._loop.stop)


def init_bot() -> TelegramBot:
    """Initialize and return the bot singleton."""
    global _bot_instance
    _bot_instance = TelegramBot(
        token=settings.telegram_bot_token,
        chat_ids=settings.telegram_chat_ids,
    )
    return _bot_instance


def get_bot() -> Optional[TelegramBot]:
    """Get the bot singleton, or None if not initialized."""
    return _bot_instance
