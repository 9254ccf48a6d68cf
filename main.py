import argparse
import asyncio
import logging
import os
import signal

from slotbot.config import Settings, load_settings
from slotbot.supply import SupplyController
from slotbot.telegram_notifier import TelegramNotifier
from slotbot.worker import build_supply, build_watcher


def _setup_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows: KeyboardInterrupt still cancels asyncio.run().
            pass


async def run(settings: Settings, *, once: bool) -> None:
    notifier = TelegramNotifier(
        settings.telegram_bot_token,
        settings.telegram_chat_ids,
        admin_chat_id=settings.telegram_admin_chat_id,
    )
    supply: SupplyController | None = build_supply(settings) if settings.booking_enabled else None
    watcher = build_watcher(settings, notifier=notifier, supply=supply)

    # Уведомление о старте (best-effort, notifier never raises)
    await notifier.notify_admin(
        "SlotBot started.\n"
        f"Mode: {'once' if once else 'forever'}\n"
        f"booking={'on' if supply else 'off'} interval={settings.check_interval_seconds}s"
    )

    try:
        if supply is not None:
            supply.start()

        if once:
            await watcher.check_once()
            return

        stop = asyncio.Event()
        _install_signal_handlers(stop)
        await watcher.run_forever(stop)

    except Exception as e:
        await notifier.notify_admin(f"SlotBot crashed.\nReason: {type(e).__name__}: {e}")
        raise

    finally:
        if supply is not None:
            await supply.stop()
        await watcher.aclose()
        await notifier.notify_admin("SlotBot stopped (process exit).")


def main() -> int:
    parser = argparse.ArgumentParser(description="SlotBot: appointment slot watcher and booker")
    parser.add_argument("--once", action="store_true", help="Run single check and exit")
    args = parser.parse_args()

    _setup_logging()
    settings = load_settings()

    asyncio.run(run(settings, once=args.once))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
