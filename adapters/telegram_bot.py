import asyncio
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv
from aiogram import Bot, Dispatcher, F
from aiogram.filters import Command, CommandObject
from aiogram.types import Message, BufferedInputFile
from aiogram.client.default import DefaultBotProperties

# === Путь к корню проекта и загрузка конфига ===

ROOT_DIR = Path(__file__).resolve().parent.parent
sys.path.append(str(ROOT_DIR))
load_dotenv(ROOT_DIR / "config.env")

from core import service, storage  # noqa: E402
from core.csv_io import template_csv  # noqa: E402
from core.parser import parse_clock, parse_id  # noqa: E402
from core.render import format_alert, render_timeline  # noqa: E402
from core.timeline import ZoomLevel  # noqa: E402

# === Конфиг ===

BOT_TOKEN = os.getenv("BOT_TOKEN")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ALERT_TIME = os.getenv("ALERT_TIME", "").strip()
TIMELINE_VIEWPORT_PX = int(os.getenv("TIMELINE_VIEWPORT_PX", "1000"))
TIMELINE_COLUMNS = int(os.getenv("TIMELINE_COLUMNS", "40"))

MAX_CSV_BYTES = 1024 * 1024

if not BOT_TOKEN:
    raise RuntimeError("BOT_TOKEN is not set (check config.env in the project root)")

try:
    DEFAULT_ZOOM = ZoomLevel.parse(os.getenv("DEFAULT_ZOOM", "month").strip() or "month")
except ValueError as e:
    raise RuntimeError("DEFAULT_ZOOM must be month, week or day (check config.env)") from e

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

# пустое ALERT_TIME: напоминания выключены
ALERT_CLOCK = parse_clock(ALERT_TIME) if ALERT_TIME else None
if ALERT_TIME and ALERT_CLOCK is None:
    logger.warning("ALERT_TIME=%r is not a valid HH:MM time, deadline alerts are off", ALERT_TIME)

bot = Bot(
    BOT_TOKEN,
    default=DefaultBotProperties(parse_mode="HTML"),
)
dp = Dispatcher()

ADD_HELP = (
    "Send the application as <code>key: value</code> lines after /add, e.g.\n\n"
    "<code>/add\n"
    "type: scholarship\n"
    "name: Erasmus Mundus\n"
    "organization: Government\n"
    "country: Germany\n"
    "region: Europe\n"
    "open: 2024-10-01\n"
    "deadline: 15.01.2025\n"
    "stage: To Apply\n"
    "status: EST\n"
    "link: https://example.com\n"
    "notes: IELTS 7.0</code>\n\n"
    "Required: type, name, country, deadline. Open defaults to today."
)


def _today():
    return datetime.now().date()


def _uid(message: Message) -> str:
    return str(message.from_user.id)


# === Команды ===


@dp.message(Command("start", "help"))
async def cmd_start(message: Message):
    await message.answer(
        "Scholarship &amp; admission tracker.\n"
        "- /add: new application (send /add alone for the form)\n"
        "- /edit &lt;id&gt;: change fields, same <code>key: value</code> lines\n"
        "- /stage &lt;id&gt; &lt;stage&gt;: To Apply, In Progress, Submitted, Done\n"
        "- /show &lt;id&gt;, /delete &lt;id&gt;\n"
        "- /list: applications with the current filters\n"
        "- /filter stage=Submitted country=Germany type=scholarship (or /filter clear)\n"
        "- /sort deadline|created|name [asc|desc]\n"
        "- /timeline [month|week|day], /focus &lt;id&gt;\n"
        "- /export, /template; send a .csv file to import."
    )


@dp.message(Command("add"))
async def cmd_add(message: Message, command: CommandObject):
    if not (command.args or "").strip():
        await message.answer(ADD_HELP)
        return
    reply, _app = service.add_from_text(_uid(message), command.args)
    await message.answer(reply)


@dp.message(Command("edit"))
async def cmd_edit(message: Message, command: CommandObject):
    app_id, body = parse_id(command.args or "")
    if app_id is None:
        await message.answer("Usage: /edit &lt;id&gt; followed by <code>key: value</code> lines.")
        return
    reply, _app = service.edit_from_text(_uid(message), app_id, body)
    await message.answer(reply)


@dp.message(Command("stage"))
async def cmd_stage(message: Message, command: CommandObject):
    app_id, rest = parse_id(command.args or "")
    if app_id is None or not rest.strip():
        await message.answer("Usage: /stage &lt;id&gt; &lt;To Apply|In Progress|Submitted|Done&gt;")
        return
    reply, _app = service.set_stage(_uid(message), app_id, rest)
    await message.answer(reply)


@dp.message(Command("delete"))
async def cmd_delete(message: Message, command: CommandObject):
    app_id, _rest = parse_id(command.args or "")
    if app_id is None:
        await message.answer("Usage: /delete &lt;id&gt;")
        return
    await message.answer(service.delete(_uid(message), app_id))


@dp.message(Command("show"))
async def cmd_show(message: Message, command: CommandObject):
    app_id, _rest = parse_id(command.args or "")
    if app_id is None:
        await message.answer("Usage: /show &lt;id&gt;")
        return
    await message.answer(service.show(_uid(message), app_id, _today()))


@dp.message(Command("list"))
async def cmd_list(message: Message):
    await message.answer(service.list_text(_uid(message), _today()))


@dp.message(Command("filter"))
async def cmd_filter(message: Message, command: CommandObject):
    await message.answer(service.set_filters(_uid(message), command.args or ""))


@dp.message(Command("sort"))
async def cmd_sort(message: Message, command: CommandObject):
    await message.answer(service.set_sort(_uid(message), command.args or ""))


@dp.message(Command("timeline"))
async def cmd_timeline(message: Message, command: CommandObject):
    user_id = _uid(message)
    zoom = None
    if (command.args or "").strip():
        reply, zoom = service.set_zoom(user_id, command.args)
        if zoom is None:
            await message.answer(reply)
            return

    layout, apps = service.build_timeline(
        user_id,
        today=_today(),
        zoom=zoom,
        viewport_width=TIMELINE_VIEWPORT_PX,
        default_zoom=DEFAULT_ZOOM,
    )
    text = render_timeline(
        layout,
        {app.id: app for app in apps},
        today=_today(),
        columns=TIMELINE_COLUMNS,
    )
    await message.answer(text)


@dp.message(Command("focus"))
async def cmd_focus(message: Message, command: CommandObject):
    """Таймлайн с окном по центру выбранной заявки."""
    app_id, _rest = parse_id(command.args or "")
    if app_id is None:
        await message.answer("Usage: /focus &lt;id&gt;")
        return

    layout, apps = service.build_timeline(
        _uid(message),
        today=_today(),
        viewport_width=TIMELINE_VIEWPORT_PX,
        default_zoom=DEFAULT_ZOOM,
    )
    try:
        scroll_px = layout.scroll_to(app_id)
    except KeyError:
        await message.answer(f"#{app_id} is not on the timeline (check /filter).")
        return

    text = render_timeline(
        layout,
        {app.id: app for app in apps},
        today=_today(),
        columns=TIMELINE_COLUMNS,
        scroll_px=scroll_px,
    )
    await message.answer(text)


@dp.message(Command("export"))
async def cmd_export(message: Message):
    content, count = service.export_csv(_uid(message))
    if not count:
        await message.answer("Nothing to export.")
        return
    filename = f"scholarflow-{_today().isoformat()}.csv"
    await message.answer_document(
        BufferedInputFile(content.encode("utf-8"), filename=filename),
        caption=f"{count} applications",
    )


@dp.message(Command("template"))
async def cmd_template(message: Message):
    await message.answer_document(
        BufferedInputFile(template_csv().encode("utf-8"), filename="scholarflow-template.csv"),
        caption="Columns: type, name, organization, country, region, link, "
                "applicationOpen, deadline, stage, timelineStatus, notes",
    )


# === Импорт CSV ===


@dp.message(F.document)
async def handle_document(message: Message):
    doc = message.document
    name = (doc.file_name or "").lower()
    if doc.mime_type != "text/csv" and not name.endswith(".csv"):
        await message.answer("Please send a .csv file.")
        return
    if doc.file_size and doc.file_size > MAX_CSV_BYTES:
        await message.answer("The file is too large.")
        return

    buf = await bot.download(doc)
    try:
        text = buf.read().decode("utf-8-sig")
    except UnicodeDecodeError:
        await message.answer("Can't read the file: it must be UTF-8 text.")
        return

    reply, _apps, _errors = service.import_csv_text(_uid(message), text)
    await message.answer(reply)


@dp.message(F.text)
async def handle_text(message: Message):
    await message.answer("Unknown command. /help lists what I can do.")


# === Напоминания о дедлайнах ===


async def alert_loop():
    sent_days = set()

    while True:
        try:
            now = datetime.now()
            alert_dt = now.replace(
                hour=ALERT_CLOCK[0],
                minute=ALERT_CLOCK[1],
                second=0,
                microsecond=0,
            )
            if now >= alert_dt and now.date() not in sent_days:
                for alert, kinds in service.due_alerts(now.date()):
                    app = alert.application
                    try:
                        await bot.send_message(int(app.user_id), format_alert(alert))
                    except Exception as e:
                        logger.error("Failed to send alert for #%s to %s: %s", app.id, app.user_id, e)
                        continue
                    storage.mark_alerts_sent(app.id, kinds, now)
                sent_days.add(now.date())

        except Exception as e:
            logger.error("alert_loop failed: %s", e)

        await asyncio.sleep(60)


# === Точка входа ===


async def main():
    service.init()
    if ALERT_CLOCK is not None:
        asyncio.create_task(alert_loop())
    await dp.start_polling(bot)


if __name__ == "__main__":
    asyncio.run(main())
