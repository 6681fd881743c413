from __future__ import annotations
import logging, os, sys
from logging.handlers import RotatingFileHandler, SysLogHandler

SYSLOG_SOCKET = "/dev/log"

class ShortFormatter(logging.Formatter):
    """
    Formatter that exposes %(shortname)s = last component of logger name (e.g., Controller)
    """
    def format(self, record: logging.LogRecord) -> str:
        record.shortname = record.name.rsplit('.', 1)[-1]
        return super().format(record)

def setup_logging(enabled: bool = True, level: str | int = "INFO", log_file: str | None = None,
                  syslog: bool = False) -> None:
    """
    Configure root logging once. Format: timestamp level [logger.func] message
    Enable/disable with env AVRD_LOGGING=1/0; level with AVRD_LOG_LEVEL=INFO/DEBUG/etc.
    With syslog=True records also go to the local syslog socket as 'avr-daemon'.
    """
    if getattr(setup_logging, "_configured", False):
        return

    if not enabled:
        logging.disable(logging.CRITICAL)
        setup_logging._configured = True
        return

    logging.disable(logging.NOTSET)
    lvl = logging.getLevelName(level.upper()) if isinstance(level, str) else level
    fmt = "%(asctime)s %(levelname)s [%(shortname)s.%(funcName)s] %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = ShortFormatter(fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []
    sh = logging.StreamHandler(stream=sys.stdout)
    sh.setFormatter(formatter)
    handlers.append(sh)

    if log_file:
        try:
            os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
            fh = RotatingFileHandler(log_file, maxBytes=512_000, backupCount=3)
            fh.setFormatter(formatter)
            handlers.append(fh)
        except OSError as e:
            # keep console
            print(f"log file {log_file} unavailable: {e}", file=sys.stderr)

    if syslog and os.path.exists(SYSLOG_SOCKET):
        slh = SysLogHandler(address=SYSLOG_SOCKET, facility=SysLogHandler.LOG_DAEMON)
        slh.setFormatter(logging.Formatter("avr-daemon[%(process)d]: %(message)s"))
        handlers.append(slh)

    logging.basicConfig(level=lvl, handlers=handlers, force=True)
    setup_logging._configured = True

def resolve_logging_from_env_and_cfg(cfg) -> tuple[bool, str, str | None, bool]:
    """
    Determine enabled/level/file/syslog using env first, then cfg if present.
    Env:
      AVRD_LOGGING=1|0, AVRD_LOG_LEVEL=DEBUG|INFO|..., AVRD_LOG_FILE=/path/to/log
    """
    env_enabled = os.getenv("AVRD_LOGGING")
    enabled = (env_enabled is None) or (env_enabled.lower() not in ("0", "false", "no"))
    level = os.getenv("AVRD_LOG_LEVEL", "INFO")
    log_file = os.getenv("AVRD_LOG_FILE")
    syslog = False

    lcfg = getattr(cfg, "logging", None)
    if lcfg is not None:
        if env_enabled is None:
            enabled = bool(lcfg.enabled)
        if os.getenv("AVRD_LOG_LEVEL") is None:
            level = str(lcfg.level)
        if os.getenv("AVRD_LOG_FILE") is None and lcfg.file:
            log_file = str(lcfg.file)
        syslog = bool(lcfg.syslog)

    return enabled, level, log_file, syslog
