from typing import Callable

from fastapi import Request
from sqlalchemy.orm import Session

from ..utils.notification_dispatcher import NotificationDispatcher
from ..utils.notifications import Notifier
from ..utils.settings_cache import SettingsCache


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_settings_cache(request: Request) -> SettingsCache:
    return request.app.state.settings_cache


def get_session_factory(request: Request) -> Callable[[], Session]:
    """Session factory for work that outlives the request (background sends)."""
    return request.app.state.session_factory


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher
