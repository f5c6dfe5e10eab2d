import asyncio, signal

from solalertbot.config import DISCORD_TOKEN
from solalertbot.logging_setup import setup_logging, log
from solalertbot.service import AlertService


async def run_headless(service: AlertService):
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    await service.start()
    log.info("Running without Discord; Ctrl+C to stop")
    try:
        await stop.wait()
    finally:
        await service.stop()


if __name__ == "__main__":
    setup_logging()
    service = AlertService()
    if DISCORD_TOKEN:
        from solalertbot.bot import Bot
        bot = Bot(service)
        bot.run(DISCORD_TOKEN, log_handler=None)
    else:
        asyncio.run(run_headless(service))
