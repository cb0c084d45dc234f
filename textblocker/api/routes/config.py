"""Configuration endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from textblocker.api.schemas.models import ConfigSchema
from textblocker.api.services.state import get_settings, reload_settings
from textblocker.core.config.presets import list_presets, preset_patch
from textblocker.core.config.settings import settings_to_dict

router = APIRouter()


@router.get("/config", response_model=ConfigSchema)
def get_config() -> ConfigSchema:
    """Return the current effective configuration."""

    settings = get_settings()
    return ConfigSchema(**settings_to_dict(settings))


@router.get("/config/presets")
def get_presets() -> dict[str, list[dict[str, object]]]:
    """Return available processing presets."""

    return {"presets": list_presets()}


@router.post("/config/presets/{preset_id}", response_model=ConfigSchema)
def apply_preset(preset_id: str) -> ConfigSchema:
    """Apply a preset by id and return the updated configuration."""

    try:
        patch = preset_patch(preset_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Unknown preset") from None
    settings = reload_settings(patch)
    return ConfigSchema(**settings_to_dict(settings))


@router.post("/config", response_model=ConfigSchema)
def update_config(cfg: ConfigSchema) -> ConfigSchema:
    """Update in-memory settings; the next job started uses them.

    Persist configuration via environment variables or the YAML config file.
    """

    data = cfg.model_dump()
    settings = reload_settings(data)
    return ConfigSchema(**settings_to_dict(settings))
