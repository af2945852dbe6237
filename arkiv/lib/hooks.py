"""Async action/filter hooks for extending the media pipeline.

Actions run callbacks for their side effects; filters thread a value through
every callback and return the result. Lower priorities run first.

    from arkiv.lib.hooks import filter, MEDIA_DELIVERY_BODY

    @filter(MEDIA_DELIVERY_BODY)
    async def watermark_pdf(body, record, caller):
        return stamp(body, caller.user_id) if record.mime_type == "application/pdf" else body
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable, TypeVar

T = TypeVar("T")


@dataclass(order=True)
class HookHandler:
    """A registered hook callback with its priority."""

    priority: int
    callback: Callable = field(compare=False)

    async def call(self, *args: Any, **kwargs: Any) -> Any:
        result = self.callback(*args, **kwargs)
        if asyncio.iscoroutine(result):
            return await result
        return result


def _remove(handlers: list[HookHandler], callback: Callable) -> bool:
    for i, handler in enumerate(handlers):
        if handler.callback is callback:
            handlers.pop(i)
            return True
    return False


class HookRegistry:
    """Registry holding actions and filters by hook name."""

    def __init__(self) -> None:
        self._actions: dict[str, list[HookHandler]] = defaultdict(list)
        self._filters: dict[str, list[HookHandler]] = defaultdict(list)

    def add_action(self, hook_name: str, callback: Callable[..., Any], priority: int = 10) -> None:
        self._actions[hook_name].append(HookHandler(priority=priority, callback=callback))
        self._actions[hook_name].sort()

    def add_filter(self, hook_name: str, callback: Callable[..., T], priority: int = 10) -> None:
        self._filters[hook_name].append(HookHandler(priority=priority, callback=callback))
        self._filters[hook_name].sort()

    def remove_action(self, hook_name: str, callback: Callable[..., Any]) -> bool:
        """Remove an action callback. Returns True if it was registered."""
        return _remove(self._actions.get(hook_name, []), callback)

    def remove_filter(self, hook_name: str, callback: Callable[..., Any]) -> bool:
        """Remove a filter callback. Returns True if it was registered."""
        return _remove(self._filters.get(hook_name, []), callback)

    def has_action(self, hook_name: str) -> bool:
        return bool(self._actions.get(hook_name))

    def has_filter(self, hook_name: str) -> bool:
        return bool(self._filters.get(hook_name))

    async def do_action(self, hook_name: str, *args: Any, **kwargs: Any) -> None:
        """Run every action registered for ``hook_name`` in priority order."""
        from arkiv.lib.observability import span

        with span(f"hook.action:{hook_name}", hook_name=hook_name):
            for handler in list(self._actions.get(hook_name, [])):
                await handler.call(*args, **kwargs)

    async def apply_filters(self, hook_name: str, value: T, *args: Any, **kwargs: Any) -> T:
        """Pass ``value`` through every filter for ``hook_name`` and return the result.

        Extra arguments are handed to each callback after the value.
        """
        from arkiv.lib.observability import span

        with span(f"hook.filter:{hook_name}", hook_name=hook_name):
            for handler in list(self._filters.get(hook_name, [])):
                value = await handler.call(value, *args, **kwargs)
            return value

    def clear(self) -> None:
        """Drop every registered hook. Used by the test suite."""
        self._actions.clear()
        self._filters.clear()


# Process-wide registry
hooks = HookRegistry()


def add_action(hook_name: str, callback: Callable[..., Any], priority: int = 10) -> None:
    hooks.add_action(hook_name, callback, priority)


def add_filter(hook_name: str, callback: Callable[..., T], priority: int = 10) -> None:
    hooks.add_filter(hook_name, callback, priority)


def remove_action(hook_name: str, callback: Callable[..., Any]) -> bool:
    return hooks.remove_action(hook_name, callback)


def remove_filter(hook_name: str, callback: Callable[..., Any]) -> bool:
    return hooks.remove_filter(hook_name, callback)


async def do_action(hook_name: str, *args: Any, **kwargs: Any) -> None:
    await hooks.do_action(hook_name, *args, **kwargs)


async def apply_filters(hook_name: str, value: T, *args: Any, **kwargs: Any) -> T:
    return await hooks.apply_filters(hook_name, value, *args, **kwargs)


def action(hook_name: str, priority: int = 10) -> Callable[[Callable], Callable]:
    """Decorator registering the function as an action on the global registry."""

    def decorator(func: Callable) -> Callable:
        hooks.add_action(hook_name, func, priority)

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return func(*args, **kwargs)

        return wrapper

    return decorator


def filter(hook_name: str, priority: int = 10) -> Callable[[Callable], Callable]:
    """Decorator registering the function as a filter on the global registry."""

    def decorator(func: Callable) -> Callable:
        hooks.add_filter(hook_name, func, priority)

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return func(*args, **kwargs)

        return wrapper

    return decorator


# Upload actions: (tenant_id, category, file_name) / (record)
BEFORE_MEDIA_UPLOAD = "before_media_upload"
AFTER_MEDIA_UPLOAD = "after_media_upload"

# Delete actions: (record)
BEFORE_MEDIA_DELETE = "before_media_delete"
AFTER_MEDIA_DELETE = "after_media_delete"

# Migration actions
MIGRATION_FILE_MIGRATED = "migration_file_migrated"
MIGRATION_FINISHED = "migration_finished"
STORAGE_BACKEND_ACTIVATED = "storage_backend_activated"

# Filters
MEDIA_UPLOAD_DATA = "media_upload_data"
MEDIA_DELIVERY_BODY = "media_delivery_body"
MEDIA_DELIVERY_HEADERS = "media_delivery_headers"

# Observability hooks
LOGFIRE_CONFIGURED = "logfire_configured"
