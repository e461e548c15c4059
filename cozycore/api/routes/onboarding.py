"""
cozycore.api.routes.onboarding — Welcome thread config & messages
==================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from cozycore.api.deps import get_engine, ok, require_guild_manager, require_installed_guild
from cozycore.api.rate_limit import rate_limited_admin
from cozycore.database.engine import run_db
from cozycore.services import onboarding_service

router = APIRouter(
    prefix="/guilds/{guild_id}/onboarding",
    tags=["onboarding"],
    dependencies=[Depends(rate_limited_admin)],
)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OnboardingUpdate(_CamelModel):
    enabled: bool | None = None
    welcome_channel_id: str | None = None
    roles_on_join: list[str] | None = None
    thread_auto_delete: str | None = None
    typing_delay: int | None = None
    show_typing_indicator: bool | None = None
    thread_name_template: str | None = None


class WelcomeMessageCreate(_CamelModel):
    content: str | None = None
    order: int | None = None
    selectable_roles: list[str] = Field(default_factory=list)


class WelcomeMessageUpdate(_CamelModel):
    content: str | None = None
    selectable_roles: list[str] | None = None


class MessageOrder(BaseModel):
    id: str
    order: int


class MessagesReorder(BaseModel):
    messages: list[MessageOrder]


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
@router.get("")
async def get_onboarding(
    guild_id: str,
    guild: dict = Depends(require_guild_manager),
    engine=Depends(get_engine),
):
    return ok(await run_db(onboarding_service.get_onboarding, engine, guild_id))


@router.patch("")
async def update_onboarding(
    guild_id: str,
    body: OnboardingUpdate,
    guild: dict = Depends(require_installed_guild),
    engine=Depends(get_engine),
):
    changes = body.model_dump(exclude_unset=True)
    try:
        config = await run_db(onboarding_service.update_onboarding, engine, guild_id, changes)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return ok(config)


# ---------------------------------------------------------------------------
# Welcome messages
# ---------------------------------------------------------------------------
@router.post("/messages")
async def create_message(
    guild_id: str,
    body: WelcomeMessageCreate,
    guild: dict = Depends(require_installed_guild),
    engine=Depends(get_engine),
):
    message = await run_db(
        onboarding_service.create_message,
        engine, guild_id, body.content, body.order, body.selectable_roles,
    )
    return ok(message)


@router.patch("/messages")
async def reorder_messages(
    guild_id: str,
    body: MessagesReorder,
    guild: dict = Depends(require_guild_manager),
    engine=Depends(get_engine),
):
    await run_db(
        onboarding_service.reorder_messages,
        engine, guild_id, [(m.id, m.order) for m in body.messages],
    )
    return ok()


@router.patch("/messages/{message_id}")
async def update_message(
    guild_id: str,
    message_id: str,
    body: WelcomeMessageUpdate,
    guild: dict = Depends(require_installed_guild),
    engine=Depends(get_engine),
):
    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    try:
        message = await run_db(
            onboarding_service.update_message, engine, guild_id, message_id, changes,
        )
    except onboarding_service.WelcomeMessageNotFound as exc:
        raise HTTPException(404, str(exc))
    return ok(message)


@router.delete("/messages/{message_id}")
async def delete_message(
    guild_id: str,
    message_id: str,
    guild: dict = Depends(require_guild_manager),
    engine=Depends(get_engine),
):
    try:
        await run_db(onboarding_service.delete_message, engine, guild_id, message_id)
    except onboarding_service.WelcomeMessageNotFound as exc:
        raise HTTPException(404, str(exc))
    return ok()
