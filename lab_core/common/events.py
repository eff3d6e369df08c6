# lab_core/common/events.py
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], None]

_registry: Dict[str, List[Handler]] = defaultdict(list)

# Event names published by the lab engine
ORDER_STATUS_CHANGED = "lab.order.status_changed"
PARAMETER_FLAGGED = "lab.parameter.flagged"
ORDER_ITEM_COMPLETED = "lab.order_item.completed"
REPEAT_TEST_REQUESTED = "lab.repeat_test.requested"


def subscribe(event_name: str):
    """
    Decorator to register an event handler.
    Usage:
        @subscribe("lab.parameter.flagged")
        def handler(payload): ...
    """
    def _decorator(fn: Handler) -> Handler:
        if fn not in _registry[event_name]:
            _registry[event_name].append(fn)
        return fn
    return _decorator


def publish(event_name: str, payload: Dict[str, Any]) -> None:
    """
    Publish an event to in-process subscribers.

    Handlers run synchronously inside the publisher's transaction, so a
    handler failure rolls the whole operation back. Keep payloads ID-based
    (strings) to avoid cross-app imports.
    """
    handlers = _registry.get(event_name, [])
    logger.debug("publish %s to %d handler(s)", event_name, len(handlers))
    for handler in handlers:
        handler(payload)


def subscribers(event_name: str) -> List[Handler]:
    return list(_registry.get(event_name, []))


def unsubscribe(event_name: str, fn: Handler) -> None:
    handlers = _registry.get(event_name, [])
    if fn in handlers:
        handlers.remove(fn)
