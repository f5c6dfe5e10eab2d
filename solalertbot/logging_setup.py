import logging
from .config import LOG_LEVEL

ROOT = "solalertbot"
QUIET = ("aiohttp", "discord", "telegram", "httpx", "sqlalchemy.engine")

class Color:
    RESET="\x1b[0m"; GRAY="\x1b[90m"; GREEN="\x1b[32m"; YELLOW="\x1b[33m"; RED="\x1b[31m"
    BLUE="\x1b[34m"; CYAN="\x1b[36m"; MAGENTA="\x1b[35m"; BOLD="\x1b[1m"

class ColorFormatter(logging.Formatter):
    """``HH:MM:SS | LEVEL | component | message``; our own loggers drop the package prefix."""
    COLORS={"DEBUG":Color.BLUE,"INFO":Color.GREEN,"WARNING":Color.YELLOW,"ERROR":Color.RED,"CRITICAL":Color.RED+Color.BOLD}
    def format(self, rec):
        lvl=f"{self.COLORS.get(rec.levelname,'')}{rec.levelname:<7}{Color.RESET}"
        t=f"{Color.GRAY}{self.formatTime(rec, '%H:%M:%S')}{Color.RESET}"
        ours = rec.name.startswith(ROOT + ".")
        comp = rec.name[len(ROOT) + 1:] if ours else rec.name
        name=f"{Color.CYAN if ours else Color.MAGENTA}{comp}{Color.RESET}"
        return f"{t} | {lvl} | {name} | {super().format(rec)}"

def setup_logging(level: str = LOG_LEVEL):
    root = logging.getLogger()
    root.setLevel(level)
    h = logging.StreamHandler()
    h.setFormatter(ColorFormatter("%(message)s"))
    root.handlers[:] = [h]
    for noisy in QUIET:
        logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("discord.gateway").setLevel(logging.INFO)

def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT}.{name}")

log = get_logger("core")
