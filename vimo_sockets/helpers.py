import asyncio
import datetime
import json
import logging
import threading
from typing import Any, Coroutine, TypeVar

import sentry_sdk

from vimo_sockets.settings import (
    LOG_LEVEL,
    SENTRY_DSN,
    APP_ENV,
    SENTRY_SAMPLE_RATE,
    SENTRY_PROFILING_SAMPLE_RATE,
)

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

T = TypeVar("T")


def time_now():
    # mongo keeps millisecond precision, whole seconds compare equal after a round trip
    return datetime.datetime.now().replace(microsecond=0)


def get_log_level() -> int:
    """``LOG_LEVEL`` from the environment, unknown names fall back to INFO."""
    return LOG_LEVELS.get(LOG_LEVEL.upper(), logging.INFO)


def configure_logging():
    logging.basicConfig(format="%(asctime)s %(levelname)s:%(message)s", level=get_log_level())


def configure_sentry():
    if not SENTRY_DSN or APP_ENV == "local":
        return

    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=APP_ENV,
        traces_sample_rate=SENTRY_SAMPLE_RATE,
        profiles_sample_rate=SENTRY_PROFILING_SAMPLE_RATE,
    )


def parse_data(data) -> dict:
    """
    Socket payloads arrive either as a dict or as a JSON string, anything
    unreadable becomes an empty dict.
    """
    if isinstance(data, dict):
        return data
    if not isinstance(data, str):
        return {}

    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as e:
        logging.error(f"Could not parse payload: {e}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def get_room_name(room_code: str) -> str:
    """socket.io group that mirrors a room's roster."""
    return f"room_{room_code}"


def parse_query_string(query_string: str) -> dict[str, str]:
    return dict(q.split("=", 1) for q in query_string.split("&") if "=" in q)


def run_async_task(coro: Coroutine[Any, Any, T],
                   loop: asyncio.AbstractEventLoop | None = None) -> T:
    """
    Runs ``coro`` to completion on ``loop`` (or a fresh loop) in a worker thread
    and returns its result. Used at import time, before uvicorn owns a loop.
    """
    outcome: dict[str, Any] = {}

    def target() -> None:
        own_loop = loop is None
        worker_loop = asyncio.new_event_loop() if own_loop else loop
        asyncio.set_event_loop(worker_loop)
        try:
            outcome["result"] = worker_loop.run_until_complete(coro)
        except Exception as e:
            outcome["error"] = e
        finally:
            if own_loop:
                worker_loop.close()

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    thread.join()

    if "error" in outcome:
        raise outcome["error"]
    return outcome["result"]
