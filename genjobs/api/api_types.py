"""Type definitions for API request/response validation"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, Any, Optional, List


class GenerateRequest(BaseModel):
    """Fields shared by image and video generation requests"""
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(min_length=1)
    task_id: Optional[str] = Field(default=None, alias="taskId")
    model: Optional[str] = None
    aspect_ratio: Optional[str] = None
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)
    guidance_scale: Optional[float] = None

    def to_options(self, kind: str) -> Dict[str, Any]:
        options = self.model_dump(exclude_none=True, exclude={"prompt", "task_id", "model"})
        options["kind"] = kind
        if self.model:
            options["service_id"] = self.model
        if self.task_id:
            options["task_id"] = self.task_id
        return options


class GenerateImageRequest(GenerateRequest):
    """Request type for image generation"""
    steps: Optional[int] = Field(default=None, gt=0)


class GenerateVideoRequest(GenerateRequest):
    """Request type for video generation"""
    resolution: Optional[str] = None
    duration: Optional[float] = Field(default=None, gt=0)
    seed: Optional[int] = None
    negative_prompt: Optional[str] = None
    frames_per_second: Optional[int] = Field(default=None, gt=0)
    enable_safety_checker: Optional[bool] = None
    enable_prompt_expansion: Optional[bool] = None


class ServiceInfo(BaseModel):
    """One registered generation service"""
    id: str
    name: str
    url: str
    type: str
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    provider: str = "http"


class ServicesResponse(BaseModel):
    """Registered services grouped by kind"""
    services: Dict[str, List[ServiceInfo]]
    defaults: Dict[str, Optional[str]]


class CancelResponse(BaseModel):
    """Response type for a cancellation request"""
    task_id: str = Field(serialization_alias="taskId")
    status: str
