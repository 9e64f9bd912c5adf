"""Room session services: registry, protocol handler and persistence."""

from .connections import ConnectionDirectory
from .identity import Identity, UserDirectory
from .registry import RoomRegistry
from .session import SessionHandler
from .store import RoomStore


def build_session(app, emit) -> SessionHandler:
    """Wire one registry and protocol handler for ``app``."""
    store = RoomStore(app)
    registry = RoomRegistry(store, app.logger, code_length=app.config.get('ROOM_CODE_LENGTH', 5))
    return SessionHandler(
        registry=registry,
        store=store,
        directory=ConnectionDirectory(),
        users=UserDirectory(),
        emit=emit,
        logger=app.logger,
    )


__all__ = [
    'ConnectionDirectory',
    'Identity',
    'RoomRegistry',
    'RoomStore',
    'SessionHandler',
    'UserDirectory',
    'build_session',
]
