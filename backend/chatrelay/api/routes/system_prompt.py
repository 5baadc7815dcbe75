"""
System prompt API routes
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, ConfigDict, Field

from chatrelay.core.system_policy import SystemPolicy, get_system_policy

router = APIRouter(prefix="/api", tags=["system-prompt"])


class SystemPromptUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    new_prompt: Optional[str] = Field(default=None, alias="newPrompt", description="Replacement system prompt")


@router.post("/system-prompt")
async def update_system_prompt(
    update: SystemPromptUpdate,
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    policy: SystemPolicy = Depends(get_system_policy),
):
    """
    Replace the system prompt for all users.

    Requires X-Admin-Token when an admin token is configured.
    """
    policy.update(update.new_prompt, token=x_admin_token)
    return {"success": True}


@router.get("/system-prompt")
async def read_system_prompt(policy: SystemPolicy = Depends(get_system_policy)):
    """Current system prompt"""
    return {"prompt": policy.prompt}
