"""
Form Builder Lifecycle Events — ordered before/after hooks around every
mutating operation.

Provides:
    - FormEvent: topic names for forms, revisions, submissions and settings
    - LifecycleEvent: the payload handed to each subscriber
    - LifecycleEventBus: registry and synchronous dispatcher

Dispatch semantics:
    - before_* subscribers run in registration order; the first exception
      propagates unchanged and aborts the operation before persistence.
    - after_* subscribers all run in registration order after persistence;
      failures are collected and reported as FormBuilderHookError (the
      write has already committed).
    - dispatch is non-reentrant: a subscriber publishing the topic it is
      running for raises FormBuilderReentrantDispatchError.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterator, List, Optional, Tuple

from formbuilder.engine.errors import FormBuilderHookError, FormBuilderReentrantDispatchError

logger = logging.getLogger("formbuilder.engine.events")

# (id(bus), topic) pairs being dispatched in the current thread/task
_dispatching: ContextVar[FrozenSet[Tuple[int, str]]] = ContextVar(
    "formbuilder_dispatching", default=frozenset()
)


# ---------------------------------------------------------------------------
# Topic names
# ---------------------------------------------------------------------------

class FormEvent:
    """Enumeration of lifecycle topics."""
    BEFORE_FORM_CREATE = "before_form_create"
    AFTER_FORM_CREATE = "after_form_create"
    BEFORE_FORM_REVISION_CREATE = "before_form_revision_create"
    AFTER_FORM_REVISION_CREATE = "after_form_revision_create"
    BEFORE_FORM_UPDATE = "before_form_update"
    AFTER_FORM_UPDATE = "after_form_update"
    BEFORE_FORM_DELETE = "before_form_delete"
    AFTER_FORM_DELETE = "after_form_delete"
    BEFORE_FORM_REVISION_DELETE = "before_form_revision_delete"
    AFTER_FORM_REVISION_DELETE = "after_form_revision_delete"
    BEFORE_FORM_PUBLISH = "before_form_publish"
    AFTER_FORM_PUBLISH = "after_form_publish"
    BEFORE_FORM_UNPUBLISH = "before_form_unpublish"
    AFTER_FORM_UNPUBLISH = "after_form_unpublish"

    BEFORE_SUBMISSION_CREATE = "before_submission_create"
    AFTER_SUBMISSION_CREATE = "after_submission_create"
    BEFORE_SUBMISSION_UPDATE = "before_submission_update"
    AFTER_SUBMISSION_UPDATE = "after_submission_update"
    BEFORE_SUBMISSION_DELETE = "before_submission_delete"
    AFTER_SUBMISSION_DELETE = "after_submission_delete"

    BEFORE_SETTINGS_CREATE = "before_settings_create"
    AFTER_SETTINGS_CREATE = "after_settings_create"
    BEFORE_SETTINGS_UPDATE = "before_settings_update"
    AFTER_SETTINGS_UPDATE = "after_settings_update"
    BEFORE_SETTINGS_DELETE = "before_settings_delete"
    AFTER_SETTINGS_DELETE = "after_settings_delete"

    ALL = frozenset({
        BEFORE_FORM_CREATE, AFTER_FORM_CREATE,
        BEFORE_FORM_REVISION_CREATE, AFTER_FORM_REVISION_CREATE,
        BEFORE_FORM_UPDATE, AFTER_FORM_UPDATE,
        BEFORE_FORM_DELETE, AFTER_FORM_DELETE,
        BEFORE_FORM_REVISION_DELETE, AFTER_FORM_REVISION_DELETE,
        BEFORE_FORM_PUBLISH, AFTER_FORM_PUBLISH,
        BEFORE_FORM_UNPUBLISH, AFTER_FORM_UNPUBLISH,
        BEFORE_SUBMISSION_CREATE, AFTER_SUBMISSION_CREATE,
        BEFORE_SUBMISSION_UPDATE, AFTER_SUBMISSION_UPDATE,
        BEFORE_SUBMISSION_DELETE, AFTER_SUBMISSION_DELETE,
        BEFORE_SETTINGS_CREATE, AFTER_SETTINGS_CREATE,
        BEFORE_SETTINGS_UPDATE, AFTER_SETTINGS_UPDATE,
        BEFORE_SETTINGS_DELETE, AFTER_SETTINGS_DELETE,
    })


@dataclass
class LifecycleEvent:
    """
    Payload handed to subscribers. Only the attributes relevant to the
    topic are set; e.g. revision deletes carry previous + revisions.

    Before-subscribers may modify `form` / `submission` / `settings` in
    place; the modified entity is what gets persisted.
    """
    topic: str
    form: Any = None
    original: Any = None
    latest: Any = None
    previous: Any = None
    revisions: Optional[List[Any]] = None
    submission: Any = None
    settings: Any = None
    extra: Dict[str, Any] = field(default_factory=dict)


Subscriber = Callable[[LifecycleEvent], Any]


class LifecycleEventBus:
    """
    Central registry and dispatcher for lifecycle subscribers.

    Usage:
        bus = LifecycleEventBus()

        @bus.on(FormEvent.BEFORE_FORM_UPDATE)
        def forbid_renames(event):
            if event.form.name != event.original.name:
                raise ValueError("renames are frozen")

        bus.publish_before(FormEvent.BEFORE_FORM_UPDATE, form=new, original=old)
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Subscriber]] = {}
        # _subscribers[topic] = [fn, ...] in registration order

    def subscribe(self, topic: str, subscriber: Subscriber) -> Callable[[], None]:
        """
        Register a subscriber for a topic.

        Returns:
            A callable that removes this subscriber again.
        """
        self._check_topic(topic)
        self._subscribers.setdefault(topic, []).append(subscriber)
        logger.debug(f"Subscribed {getattr(subscriber, '__name__', subscriber)!r} to {topic}")

        def unsubscribe() -> None:
            self.unsubscribe(topic, subscriber)

        return unsubscribe

    def on(self, topic: str) -> Callable[[Subscriber], Subscriber]:
        """Decorator form of subscribe()."""
        def decorator(fn: Subscriber) -> Subscriber:
            self.subscribe(topic, fn)
            return fn
        return decorator

    def unsubscribe(self, topic: str, subscriber: Subscriber) -> bool:
        """Remove a subscriber. Returns False if it was not registered."""
        subscribers = self._subscribers.get(topic, [])
        if subscriber in subscribers:
            subscribers.remove(subscriber)
            return True
        return False

    def publish_before(self, topic: str, **params: Any) -> LifecycleEvent:
        """
        Run all before-subscribers synchronously, in registration order.
        The first exception propagates unchanged and aborts the caller.
        """
        event = self._build_event(topic, params)
        with self._dispatch(topic):
            for subscriber in list(self._subscribers.get(topic, [])):
                subscriber(event)
        return event

    def publish_after(self, topic: str, result: Any = None, **params: Any) -> LifecycleEvent:
        """
        Run all after-subscribers synchronously, in registration order.

        Every subscriber runs even if an earlier one fails. Failures are
        reported afterwards as FormBuilderHookError carrying `result`.
        """
        event = self._build_event(topic, params)
        errors: List[Exception] = []
        with self._dispatch(topic):
            for subscriber in list(self._subscribers.get(topic, [])):
                try:
                    subscriber(event)
                except Exception as e:
                    logger.error(
                        f"After-subscriber {getattr(subscriber, '__name__', subscriber)!r} "
                        f"failed on {topic}: {e}"
                    )
                    errors.append(e)

        if errors:
            raise FormBuilderHookError(
                f"{len(errors)} subscriber(s) failed on {topic} after commit",
                topic=topic,
                errors=errors,
                result=result,
            ) from errors[0]
        return event

    @contextmanager
    def _dispatch(self, topic: str) -> Iterator[None]:
        key = (id(self), topic)
        active = _dispatching.get()
        if key in active:
            raise FormBuilderReentrantDispatchError(
                f"{topic} published from one of its own subscribers", topic=topic,
            )
        token = _dispatching.set(active | {key})
        try:
            yield
        finally:
            _dispatching.reset(token)

    def _build_event(self, topic: str, params: Dict[str, Any]) -> LifecycleEvent:
        self._check_topic(topic)
        known = {k: params.pop(k) for k in list(params) if k in _EVENT_FIELDS}
        return LifecycleEvent(topic=topic, extra=params, **known)

    @staticmethod
    def _check_topic(topic: str) -> None:
        if topic not in FormEvent.ALL:
            raise ValueError(f"Unknown lifecycle topic: {topic}")

    def get_subscribers(self, topic: str) -> List[Subscriber]:
        """Get the subscribers for a topic, in dispatch order."""
        return list(self._subscribers.get(topic, []))

    def clear(self) -> None:
        """Remove all subscribers."""
        self._subscribers.clear()

    @property
    def subscriber_count(self) -> int:
        """Total number of registered subscribers."""
        return sum(len(subs) for subs in self._subscribers.values())


_EVENT_FIELDS = frozenset({
    "form", "original", "latest", "previous", "revisions", "submission", "settings",
})
