from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from formdesk.auth.deps import get_principal
from formdesk.core.rbac import Action, Principal, enforce
from formdesk.services.settings_store import SettingsStore, get_settings_store

logger = logging.getLogger("formdesk.settings")

router = APIRouter(prefix="/system-settings", tags=["system-settings"])


class SettingsIn(BaseModel):
    # checked by SettingsStore.update
    heartbeat_window: Any = None


@router.get("")
def get_settings(principal: Principal = Depends(get_principal), store: SettingsStore = Depends(get_settings_store)):
    enforce(principal, Action.VIEW_SETTINGS)
    return store.get()


@router.put("")
def update_settings(
    body: SettingsIn,
    principal: Principal = Depends(get_principal),
    store: SettingsStore = Depends(get_settings_store),
):
    enforce(principal, Action.UPDATE_SETTINGS)
    data = store.update(heartbeat_window=body.heartbeat_window)
    logger.info("System settings updated by %s: heartbeat_window=%s", principal.id, data["heartbeat_window"])
    return data
