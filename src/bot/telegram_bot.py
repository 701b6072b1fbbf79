"""
Reminder Bot — Telegram Bot.

Telegram is the only user interface. Every interaction (capturing a
reminder, confirming it, listing, history, deleting) flows through this bot,
and the job queue drives the reminder sweep and the untimed digest.

Handlers are thin: they call ActionService and render its responses.
Nothing is kept in memory between updates; drafts live in SQLite and
delete-selection state travels in the callback payload.
"""

from __future__ import annotations

import logging
from datetime import datetime, time as dt_time, timedelta, timezone
from typing import TYPE_CHECKING

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ParseMode
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from src.config import settings
from src.core.action_service import (
    ActionService,
    ConfirmationPromptResponse,
    ListResponse,
    ResponseKind,
    ServiceResponse,
)
from src.core.time_resolver import civil_tz

if TYPE_CHECKING:
    from src.data.db import PendingConfirmationDB, ReminderDB
    from src.data.models import Reminder
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

# Telegram rejects callback_data longer than 64 bytes
_MAX_CALLBACK_BYTES = 64


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _owner_id(update: Update) -> str:
    return str(update.effective_user.id)


def _service(context: ContextTypes.DEFAULT_TYPE) -> ActionService:
    return context.bot_data["service"]


# ---------------------------------------------------------------------------
# Keyboards
# ---------------------------------------------------------------------------


def _confirmation_keyboard(token: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[
        InlineKeyboardButton("✅ Save", callback_data=f"sv:{token}"),
        InlineKeyboardButton("❌ Cancel", callback_data=f"cx:{token}"),
    ]])


def _manage_button() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[InlineKeyboardButton("🗑️ Manage", callback_data="manage")]])


def _encode_ids(ids: set[int]) -> str:
    return ",".join(str(i) for i in sorted(ids))


def _decode_ids(csv: str) -> set[int]:
    return {int(part) for part in csv.split(",") if part.strip().isdigit()}


def _manage_keyboard(reminders: list[Reminder], selected: set[int]) -> InlineKeyboardMarkup:
    """One toggle row per reminder plus Close / Delete; the selection rides in each payload."""
    csv = _encode_ids(selected)
    rows = [
        [InlineKeyboardButton(
            f"{'✅' if r.id in selected else '⬜️'} {r.task}",
            callback_data=f"tg:{r.id}:{csv}",
        )]
        for r in reminders
    ]
    rows.append([
        InlineKeyboardButton("❌ Close", callback_data="close"),
        InlineKeyboardButton(f"🗑️ Delete ({len(selected)})", callback_data=f"dl:{csv}"),
    ])
    return InlineKeyboardMarkup(rows)


def _fits_callback(reminders: list[Reminder], selected: set[int]) -> bool:
    csv = _encode_ids(selected)
    longest = max((len(f"tg:{r.id}:{csv}") for r in reminders), default=0)
    return max(longest, len(f"dl:{csv}")) <= _MAX_CALLBACK_BYTES


# ---------------------------------------------------------------------------
# Rendering service responses
# ---------------------------------------------------------------------------


async def _reply(update: Update, response: ServiceResponse) -> None:
    markup = None
    if isinstance(response, ConfirmationPromptResponse):
        markup = _confirmation_keyboard(response.token)
    elif (
        isinstance(response, ListResponse)
        and response.kind is ResponseKind.LIST_RESULT
        and response.reminders
    ):
        markup = _manage_button()
    await update.message.reply_text(
        response.message, parse_mode=ParseMode.HTML, reply_markup=markup,
    )


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message."""
    await update.message.reply_text(
        "Welcome to <b>Reminder Bot</b>!\n\n"
        "Just tell me what to remember:\n"
        "• <i>Call mom tomorrow 21:00</i>\n"
        "• <i>Gym every Mon, Wed, Fri at 7am</i>\n"
        "• <i>Pay rent monthly on the 1st</i>\n"
        "• <i>Buy a new charger</i> (no time: shown in the daily digest)\n\n"
        "Type /help for the full command list.",
        parse_mode=ParseMode.HTML,
    )


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "<b>Available commands:</b>\n"
        "/list [range] — Active reminders (default: last 7 days through today)\n"
        "/history [range] — Completed reminders\n"
        "/help — Show this message\n\n"
        "Ranges: today, tomorrow, yesterday, this week, next week, this month, "
        "or any phrase like <i>the first week of March</i>.",
        parse_mode=ParseMode.HTML,
    )


async def cmd_list(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /list [range]."""
    query = " ".join(context.args or [])
    try:
        response = await _service(context).list_reminders(_owner_id(update), query, _now())
        await _reply(update, response)
    except Exception as exc:
        logger.error("/list failed: %s", exc)
        await update.message.reply_text("Something went wrong. Please try again.")


async def cmd_history(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /history [range]."""
    query = " ".join(context.args or [])
    try:
        response = await _service(context).list_history(_owner_id(update), query, _now())
        await _reply(update, response)
    except Exception as exc:
        logger.error("/history failed: %s", exc)
        await update.message.reply_text("Something went wrong. Please try again.")


# ---------------------------------------------------------------------------
# Message handlers
# ---------------------------------------------------------------------------


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle plain text messages — extract a reminder and ask for confirmation."""
    processing_msg = await update.message.reply_text("🤖 Thinking...")
    try:
        response = await _service(context).process_text(
            update.message.text, _owner_id(update), _now(),
        )
        await _reply(update, response)
    except Exception as exc:
        logger.error("Text handling error: %s", exc)
        await update.message.reply_text(
            "Sorry, something went wrong while reading your message. Please try again."
        )
    try:
        await processing_msg.delete()
    except TelegramError as exc:
        logger.debug("Could not delete processing message: %s", exc)


# ---------------------------------------------------------------------------
# Callback handlers
# ---------------------------------------------------------------------------


async def _handle_confirmation_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Save (sv:<token>) or cancel (cx:<token>) a pending draft."""
    query = update.callback_query
    await query.answer()

    action, _, token = query.data.partition(":")
    owner_id = str(query.from_user.id)
    service = _service(context)

    if action == "sv":
        response = service.confirm(token, owner_id, _now())
    else:
        response = service.cancel(token, owner_id)
    await query.edit_message_text(response.message, parse_mode=ParseMode.HTML)


async def _handle_manage_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Enter manage mode: a toggle list of every active reminder."""
    query = update.callback_query
    await query.answer()

    reminders = _service(context).active_reminders(str(query.from_user.id))
    if not reminders:
        await query.edit_message_text("📭 No active reminders.")
        return
    await query.edit_message_text(
        "Select the reminders to delete:",
        reply_markup=_manage_keyboard(reminders, set()),
    )


async def _handle_toggle_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Flip one reminder in or out of the selection carried in tg:<id>:<csv>."""
    query = update.callback_query
    _, raw_id, csv = query.data.split(":", 2)
    reminder_id = int(raw_id)

    selected = _decode_ids(csv)
    selected ^= {reminder_id}

    reminders = _service(context).active_reminders(str(query.from_user.id))
    if not _fits_callback(reminders, selected):
        await query.answer("Too many selected. Delete these first.", show_alert=True)
        return
    await query.answer()
    await query.edit_message_reply_markup(reply_markup=_manage_keyboard(reminders, selected))


async def _handle_delete_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Delete the selection carried in dl:<csv>."""
    query = update.callback_query
    ids = _decode_ids(query.data.partition(":")[2])
    if not ids:
        await query.answer("No reminders selected.")
        return
    await query.answer()

    response = _service(context).delete_reminders(str(query.from_user.id), ids)
    await query.edit_message_text(response.message, parse_mode=ParseMode.HTML)


async def _handle_close_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    query = update.callback_query
    await query.answer()
    await query.edit_message_text("Closed.")


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    notifier: NotificationPort | None = None,
    store: ReminderDB | None = None,
    pending_db: PendingConfirmationDB | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers and jobs.

    Args:
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).
        store: Reminder store. Defaults to ReminderDB at DATABASE_PATH.
        pending_db: Draft store. Defaults to PendingConfirmationDB at DATABASE_PATH.
    """
    from src.data.db import PendingConfirmationDB, ReminderDB

    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    if notifier is None:
        from src.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)
    if store is None:
        store = ReminderDB()
    if pending_db is None:
        pending_db = PendingConfirmationDB()

    tz = civil_tz(settings.CIVIL_UTC_OFFSET_MINUTES)
    app.bot_data["notifier"] = notifier
    app.bot_data["store"] = store
    app.bot_data["service"] = ActionService(
        store,
        pending_db,
        tz=tz,
        pending_ttl=timedelta(minutes=settings.PENDING_TTL_MINUTES),
        chain=settings.EXTRACTION_CHAIN,
        hint_keywords=settings.LLM_HINT_KEYWORDS,
    )

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("list", cmd_list))
    app.add_handler(CommandHandler("history", cmd_history))

    # Inline keyboards
    app.add_handler(CallbackQueryHandler(_handle_confirmation_callback, pattern=r"^(sv|cx):[\w-]+$"))
    app.add_handler(CallbackQueryHandler(_handle_manage_callback, pattern=r"^manage$"))
    app.add_handler(CallbackQueryHandler(_handle_toggle_callback, pattern=r"^tg:\d+:[\d,]*$"))
    app.add_handler(CallbackQueryHandler(_handle_delete_callback, pattern=r"^dl:[\d,]*$"))
    app.add_handler(CallbackQueryHandler(_handle_close_callback, pattern=r"^close$"))

    # Text messages (non-command)
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))

    _setup_jobs(app, store, notifier)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_jobs(app: Application, store: ReminderDB, notifier: NotificationPort) -> None:
    """Register the reminder sweep and the twice-daily untimed digest."""
    from src.core.scheduler import send_untimed_digest, sweep_due_reminders

    tz = civil_tz(settings.CIVIL_UTC_OFFSET_MINUTES)
    all_day_defer = timedelta(minutes=settings.ALL_DAY_DEFER_MINUTES)

    async def _sweep_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await sweep_due_reminders(store, notifier, tz=tz, all_day_defer=all_day_defer)

    async def _digest_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await send_untimed_digest(store, notifier)

    app.job_queue.run_repeating(
        _sweep_job_callback,
        interval=settings.SWEEP_INTERVAL_SECONDS,
        first=5,
        name="reminder_sweep",
    )
    for hour in settings.DIGEST_HOURS:
        app.job_queue.run_daily(
            _digest_job_callback,
            time=dt_time(hour=hour, minute=0, tzinfo=tz),
            name=f"untimed_digest_{hour:02d}",
        )

    logger.info(
        "Sweep every %ds; digest at %s (UTC%+d min)",
        settings.SWEEP_INTERVAL_SECONDS,
        ", ".join(f"{h:02d}:00" for h in settings.DIGEST_HOURS),
        settings.CIVIL_UTC_OFFSET_MINUTES,
    )


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Reminder Bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
