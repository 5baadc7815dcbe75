"""
Image generation API routes
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from chatrelay.api.routes.chat import HistoryItem, history_to_turns
from chatrelay.core.logging_config import LoggingConfig
from chatrelay.services.image_service import ImageService, get_image_service

router = APIRouter(prefix="/api", tags=["images"])
logger = LoggingConfig.get_logger(__name__)


class ImageRequest(BaseModel):
    """Image request model"""
    model_config = ConfigDict(populate_by_name=True)

    prompt: Optional[str] = Field(default=None, description="What to draw (required)")
    size: Optional[str] = Field(default=None, description="Image size, e.g. 1024x1024")
    n: Optional[int] = Field(default=None, description="Number of images")
    user_id: Optional[str] = Field(default=None, alias="userId", description="Fold this user's recent turns into the prompt")
    history: Optional[List[HistoryItem]] = Field(default=None, description="Explicit turns to fold into the prompt")
    enhance: Optional[bool] = Field(default=None, description="Rewrite the prompt into a detailed description first")


class ImageResponse(BaseModel):
    success: bool
    images: List[str]


class LegacyImageRequest(BaseModel):
    prompt: Optional[str] = None
    size: Optional[str] = None


class LegacyImageResponse(BaseModel):
    imageUrl: str


@router.post("/image", response_model=ImageResponse)
async def generate_image(
    image_request: ImageRequest,
    service: ImageService = Depends(get_image_service),
):
    """Generate images; each one is returned as a PNG data URL"""
    images = await service.generate(
        image_request.prompt,
        size=image_request.size,
        n=image_request.n,
        user_id=image_request.user_id,
        history=history_to_turns(image_request.history),
        enhance=image_request.enhance,
    )
    return ImageResponse(success=True, images=images)


@router.post("/generate-image", response_model=LegacyImageResponse)
async def generate_single_image(
    image_request: LegacyImageRequest,
    service: ImageService = Depends(get_image_service),
):
    """Single-image endpoint kept for older frontends"""
    images = await service.generate(image_request.prompt, size=image_request.size, n=1, enhance=False)
    return LegacyImageResponse(imageUrl=images[0])
