# config/settings/logging.py
from pathlib import Path


def build_logging_config(log_dir: Path, log_level: str = "INFO", quiet: bool = False):
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": "lab_core.common.logging_utils.JsonFormatter",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json",
            },
            "file": {
                # stdlib TimedRotatingFileHandler is not safe with several worker processes writing.
                "class": "concurrent_log_handler.ConcurrentTimedRotatingFileHandler",
                "filename": str(Path(log_dir) / "lab_core.log"),
                "when": "midnight",
                "interval": 1,
                "backupCount": 20,
                "formatter": "json",
                "encoding": "utf-8",
            },
        },
        "root": {
            "handlers": ["console", "file"],
            "level": log_level,
        },
        "loggers": {
            "django": {
                "handlers": ["console", "file"],
                "level": log_level,
                "propagate": False,
            },
            "django.db.backends": {
                "handlers": ["console"],
                "level": "INFO",
                "propagate": False,
            },
            "lab_core": {
                "handlers": ["console", "file"],
                "level": log_level,
                "propagate": False,
            },
            "lab_core.alerts": {
                "handlers": ["console", "file"],
                "level": "INFO",
                "propagate": False,
            },
        },
    }

    # Tests: no console/file output; let records reach the root logger (caplog).
    if quiet:
        config["handlers"]["console"] = {"class": "logging.NullHandler"}
        config["handlers"]["file"] = {"class": "logging.NullHandler"}
        for name in ("lab_core", "lab_core.alerts"):
            config["loggers"][name]["propagate"] = True
    else:
        Path(log_dir).mkdir(parents=True, exist_ok=True)

    return config
