import logging.config
import sys
from contextvars import ContextVar

# LoggingMiddleware가 요청마다 설정
request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

# 잔액을 움직이는 서비스. 앱 로그 레벨과 무관하게 INFO 이상을 남긴다.
MONEY_LOGGERS = (
    "arenaapi.services.wallet_ledger_service",
    "arenaapi.services.match_slot_service",
    "arenaapi.services.match_service",
    "arenaapi.services.withdrawal_service",
    "arenaapi.services.payment_service",
)


class RequestIdFilter(logging.Filter):
    """로그 레코드에 현재 요청 ID 주입"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


def setup_logging(log_level: str = "INFO"):
    log_level = log_level.upper()
    money_level = "DEBUG" if log_level == "DEBUG" else "INFO"

    handlers = ["console", "error_console"]
    loggers = {
        "": {
            "handlers": handlers,
            "level": log_level,
        },
        "uvicorn.error": {
            "handlers": handlers,
            "level": log_level,
            "propagate": False,
        },
        "uvicorn.access": {
            "handlers": ["console"],
            "level": log_level,
            "propagate": False,
        },
        "sqlalchemy.engine": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
        "arenaapi": {
            "handlers": handlers,
            "level": log_level,
            "propagate": False,
        },
    }
    for name in MONEY_LOGGERS:
        loggers[name] = {
            "handlers": ["money_console", "error_console"],
            "level": money_level,
            "propagate": False,
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "request_id": {"()": RequestIdFilter},
            },
            "formatters": {
                "simple": {
                    "format": "%(asctime)s | %(levelname)-8s | %(request_id)s | %(name)-20s | %(message)s",
                },
                "money": {
                    "format": "%(asctime)s | %(levelname)-8s | %(request_id)s | LEDGER | %(name)s | %(message)s",
                },
                "detailed": {
                    "format": "%(asctime)s | %(levelname)-8s | %(request_id)s | %(name)s | %(pathname)s:%(lineno)d\n%(message)s",
                },
            },
            "handlers": {
                "console": {
                    "formatter": "simple",
                    "class": "logging.StreamHandler",
                    "stream": sys.stdout,
                    "filters": ["request_id"],
                },
                "money_console": {
                    "formatter": "money",
                    "class": "logging.StreamHandler",
                    "stream": sys.stdout,
                    "filters": ["request_id"],
                    "level": "DEBUG",
                },
                "error_console": {
                    "formatter": "detailed",
                    "class": "logging.StreamHandler",
                    "stream": sys.stderr,
                    "filters": ["request_id"],
                    "level": "ERROR",
                },
            },
            "loggers": loggers,
        }
    )
