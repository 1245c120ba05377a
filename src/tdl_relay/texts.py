"""User-facing message templates."""

from __future__ import annotations

CANCEL_TASK_LABEL = "🛑 Cancel task"
CANCEL_ALL_LABEL = "🛑 Cancel all tasks"


def queued(task_id: int, target: str, position: int) -> str:
    head = f"⏳ Task #{task_id} - queued\n{target}"
    if position > 1:
        return f"{head}\n📋 Queue position: {position}"
    return f"{head}\n⚡ About to start"


def processing(task_id: int) -> str:
    return f"⏳ Task #{task_id} - request received, processing..."


def start_failed(task_id: int) -> str:
    return f"❌ Task #{task_id} failed to start"


def timed_out(task_id: int) -> str:
    return f"❌ Task #{task_id} timed out"


def execution_failed(task_id: int) -> str:
    return f"⚠️ Task #{task_id} execution failed"


def completed(task_id: int) -> str:
    return f"✅ Task #{task_id} completed"


def terminated_by_user(task_id: int) -> str:
    return f"❌ Task #{task_id} terminated by user"


def cancelled_from_queue(task_id: int) -> str:
    return f"❌ Task #{task_id} removed from queue"


def cancelled_from_batch(task_id: int) -> str:
    return f"❌ Task #{task_id} cancelled with the batch"


def queue_full(task_id: int) -> str:
    return f"❌ Task #{task_id} rejected: queue is full, try again later"


def shutting_down(task_id: int) -> str:
    return f"❌ Task #{task_id} dropped: bot is shutting down"


def login_console(task_id: int) -> str:
    return (
        f"🔐 Task #{task_id} - login required\n\n"
        "📺 Open the server console and scan the QR code with Telegram\n\n"
        "⏰ The task continues automatically after login"
    )


def login_link(task_id: int, link: str) -> str:
    return (
        f"🔐 Task #{task_id} - login required\n\n"
        "📱 Open this link in Telegram to log in:\n"
        f"{link}\n\n"
        "⏰ The task continues automatically after login"
    )


def login_row(task_id: int) -> str:
    return f"🔐 Task #{task_id} - waiting for login"


def welcome(first_name: str) -> str:
    return (
        f"👋 Hello {first_name}!\n\n"
        "🤖 This is a multi-purpose relay bot\n\n"
        "📋 Features:\n"
        "• TDL forwarding - send a Telegram link (https://t.me/xxx)\n"
        "• Subscription management - send a subscription link (http/https)\n\n"
        "💡 Just send a link, the bot detects its type"
    )


HELP = (
    "📖 Help\n\n"
    "1️⃣ Send Telegram links to forward them\n"
    "   Format: https://t.me/channel/123\n"
    "   Several links in one message are processed as a batch\n\n"
    "2️⃣ Send a subscription link to add it\n"
    "   Format: any http/https link (not t.me)\n\n"
    "3️⃣ Commands:\n"
    "   /start - start\n"
    "   /help - this help\n"
    "   /status - bot status\n\n"
    "❓ Contact the administrator if something goes wrong"
)

UNKNOWN_COMMAND = "❓ Unknown command, use /help"
NOT_ALLOWED = "❌ You are not allowed to use this bot"
INVALID_MESSAGE = (
    "⚠️ Please send one of:\n"
    "• Telegram link (https://t.me/...)\n"
    "• Subscription link (http/https)"
)
ADDING_SUBSCRIPTION = "⏳ Adding subscription..."

CALLBACK_INVALID = "⚠️ Invalid task id"
CALLBACK_FOREIGN_TASK = "❌ You cannot cancel this task"
CALLBACK_FOREIGN_BATCH = "❌ You cannot cancel this batch"
CALLBACK_NOT_FOUND = "⚠️ Task already finished or not found"
CALLBACK_TASK_CANCELLED = "🛑 Task cancelled"
CALLBACK_BATCH_CANCELLED = "🛑 Batch cancelled"
SUBSCRIPTION_NOT_CONFIGURED = "❌ Subscription API is not configured"


def status_report(  # noqa: PLR0913
    *,
    script_path: str,
    script_exists: bool,
    subscription_host: str,
    user_id: int,
    queue_size: int,
    current_task_id: int | None,
    current_user_id: int | None,
) -> str:
    state = "processing" if current_task_id is not None else "idle"
    processing_info = ""
    if current_task_id is not None:
        processing_info = f"\n⚡ Now running: task #{current_task_id} (user {current_user_id})"
    return (
        "✅ Bot is running\n"
        f"📁 TDL script: {script_path} ({'✅ found' if script_exists else '❌ missing'})\n"
        f"🌐 Subscription API: {subscription_host or 'not configured'}\n"
        f"👤 Your user id: {user_id}\n"
        "📊 Queue mode: serial (one at a time)\n"
        f"🔄 State: {state}\n"
        f"📋 Waiting: {queue_size} task(s){processing_info}"
    )
