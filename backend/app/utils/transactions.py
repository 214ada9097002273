"""Unit-of-work helpers.

``atomic()`` blocks nest: only the outermost block commits (or rolls back); inner
blocks flush so their writes are visible to the rest of the enclosing operation.
Callbacks registered with ``on_commit`` run once the outermost block has committed
and are dropped if it rolls back.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable

from app.extensions import db

logger = logging.getLogger(__name__)

_DEPTH_KEY = "rewear_atomic_depth"
_CALLBACKS_KEY = "rewear_on_commit"


def _depth(session) -> int:
    return int(session.info.get(_DEPTH_KEY, 0) or 0)


def in_atomic_block(session=None) -> bool:
    return _depth(session or db.session) > 0


@contextmanager
def atomic(session=None):
    session = session or db.session
    depth = _depth(session)
    session.info[_DEPTH_KEY] = depth + 1
    try:
        yield session
        if depth == 0:
            session.commit()
        else:
            session.flush()
    except Exception:
        if depth == 0:
            session.rollback()
            session.info.pop(_CALLBACKS_KEY, None)
        raise
    finally:
        session.info[_DEPTH_KEY] = depth
    if depth == 0:
        _run_callbacks(session)


def on_commit(callback: Callable[[], None], session=None) -> None:
    session = session or db.session
    if _depth(session) == 0:
        _run_one(callback)
        return
    session.info.setdefault(_CALLBACKS_KEY, []).append(callback)


def _run_callbacks(session) -> None:
    callbacks = session.info.pop(_CALLBACKS_KEY, None) or []
    for callback in callbacks:
        _run_one(callback)


def _run_one(callback: Callable[[], None]) -> None:
    try:
        callback()
    except Exception:
        logger.exception("on_commit_callback_failed callback=%s", getattr(callback, "__name__", repr(callback)))
