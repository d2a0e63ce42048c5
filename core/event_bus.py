"""轻量级事件总线，协调器发布池事件，通知服务订阅。"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, DefaultDict, Iterable, List, Optional

from core.events import EventEnvelope, EventType

LOGGER = logging.getLogger(__name__)

Subscriber = Callable[[EventEnvelope], None]


class EventBus:
    """发布/订阅机制；``event_type=None`` 的订阅者接收全部事件。"""

    def __init__(self) -> None:
        self._subscribers: DefaultDict[Optional[EventType], List[Subscriber]] = defaultdict(list)

    def subscribe(self, event_type: Optional[EventType], handler: Subscriber) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: Optional[EventType], handler: Subscriber) -> None:
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, envelope: EventEnvelope) -> int:
        """分发事件并返回收到事件的订阅者数量。

        单个订阅者出错只记录日志，不影响其余订阅者与发布方。
        """

        handlers = list(self._subscribers.get(envelope.event.event_type, []))
        handlers += self._subscribers.get(None, [])
        delivered = 0
        for handler in handlers:
            try:
                handler(envelope)
            except Exception:
                LOGGER.exception("Subscriber %r failed on %s", handler, envelope.event.event_type.value)
                continue
            delivered += 1
        return delivered

    def subscribers(self, event_type: Optional[EventType]) -> Iterable[Subscriber]:
        """便于测试/调试时查看订阅者。"""

        return tuple(self._subscribers.get(event_type, ()))


__all__ = ["EventBus", "Subscriber"]
