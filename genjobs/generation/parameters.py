"""
Prompt enhancement and request parameter building

Turns a caller prompt plus loose options into the argument dict sent to a
service's submit tool, and applies the request mutations used by outer
retries.
"""

import logging
import random
import re
from typing import Any, Callable, Dict, Optional, Tuple

from ..core.config import ASPECT_RATIO_PRESETS, VIDEO_RESOLUTION_BASE_HEIGHT, IMAGE_GENERATION_CONFIG, VIDEO_GENERATION_CONFIG
from ..core.exceptions import TransientError

logger = logging.getLogger(__name__)

ASPECT_RATIO_IN_PROMPT = re.compile(r"(16:9|9:16|1:1)")
FILLER_PHRASES = re.compile(r"create video|create image|make video|make image|please", re.IGNORECASE)
ASPECT_TARGETS = {"16:9": 16 / 9, "9:16": 9 / 16, "1:1": 1.0}


def identity_translate(text: str) -> str:
    return text


def enhance_prompt(prompt: str, kind: str, translate: Callable[[str], str] = identity_translate) -> str:
    """
    Translate, strip filler phrases and append the kind's quality keywords

    Prompts that already carry the quality suffix are returned untouched.
    """
    suffix = (VIDEO_GENERATION_CONFIG if kind == "video" else IMAGE_GENERATION_CONFIG)["quality_suffix"]
    if suffix in prompt:
        return prompt

    enhanced = translate(prompt or "")
    enhanced = FILLER_PHRASES.sub("", enhanced)
    enhanced = re.sub(r"\s+", " ", enhanced).strip(" ,")
    enhanced = f"{enhanced}, {suffix}" if enhanced else suffix
    logger.info(f"[Parameters] Enhanced {kind} prompt: {enhanced[:200]}")
    return enhanced


# ==============================================================================
# DIMENSIONS
# ==============================================================================

def sanitize_aspect_ratio(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return ASPECT_RATIO_PRESETS.get(value.strip().lower())
    return None


def detect_aspect_ratio(prompt: str) -> Optional[str]:
    match = ASPECT_RATIO_IN_PROMPT.search(prompt or "")
    return match.group(1) if match else None


def sanitize_resolution(value: Any) -> Optional[str]:
    if isinstance(value, str) and value in VIDEO_RESOLUTION_BASE_HEIGHT:
        return value
    return None


def ensure_even(value: Optional[float]) -> Optional[int]:
    """Round to the nearest even pixel count (video encoders require it)"""
    if not value or value <= 0:
        return None
    rounded = int(round(value))
    return rounded if rounded % 2 == 0 else rounded + 1


def dimensions_for(aspect_ratio: str, resolution: str) -> Tuple[int, int]:
    base = VIDEO_RESOLUTION_BASE_HEIGHT.get(resolution, VIDEO_RESOLUTION_BASE_HEIGHT["720p"])
    if aspect_ratio == "16:9":
        return ensure_even(base * 16 / 9), ensure_even(base)
    if aspect_ratio == "9:16":
        return ensure_even(base), ensure_even(base * 16 / 9)
    return ensure_even(base), ensure_even(base)


def _positive_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def _matches_aspect(width: float, height: float, aspect_ratio: str) -> bool:
    provided = round(width / height, 2)
    target = round(ASPECT_TARGETS.get(aspect_ratio, 1.0), 2)
    return abs(provided - target) <= 0.05


# ==============================================================================
# REQUEST PARAMETERS
# ==============================================================================

def build_image_parameters(prompt: str, options: Dict[str, Any]) -> Dict[str, Any]:
    config = IMAGE_GENERATION_CONFIG
    params = {
        "prompt": prompt,
        "width": options.get("width") or config["default_width"],
        "height": options.get("height") or config["default_height"],
        "num_inference_steps": options.get("steps") or options.get("num_inference_steps") or config["default_steps"],
        "guidance_scale": options.get("guidance") or options.get("guidance_scale") or config["default_guidance"]
    }
    aspect_ratio = sanitize_aspect_ratio(options.get("aspect_ratio"))
    if aspect_ratio:
        params["aspect_ratio"] = aspect_ratio
    return params


def build_video_parameters(prompt: str, options: Dict[str, Any]) -> Dict[str, Any]:
    """
    Submit arguments for a video job

    Caller width/height are only forwarded when both are given and agree
    with the sanitized aspect ratio; otherwise the service derives them.
    """
    config = VIDEO_GENERATION_CONFIG
    aspect_ratio = (
        sanitize_aspect_ratio(options.get("aspect_ratio"))
        or detect_aspect_ratio(prompt)
        or config["default_aspect_ratio"]
    )
    resolution = sanitize_resolution(options.get("resolution")) or config["default_resolution"]

    duration = options.get("duration")
    seed = options.get("seed")
    params: Dict[str, Any] = {
        "prompt": prompt,
        "resolution": resolution,
        "duration": duration if _positive_number(duration) else config["default_duration"],
        "seed": int(seed) if isinstance(seed, (int, float)) and not isinstance(seed, bool) else random.randint(0, 999999),
        "enable_safety_checker": options.get("enable_safety_checker", config["enable_safety_checker"]),
        "enable_prompt_expansion": options.get("enable_prompt_expansion", config["enable_prompt_expansion"]),
        "aspect_ratio": aspect_ratio
    }

    width, height = options.get("width"), options.get("height")
    if _positive_number(width) and _positive_number(height):
        if _matches_aspect(width, height, aspect_ratio):
            params["width"] = ensure_even(width)
            params["height"] = ensure_even(height)
        else:
            logger.warning(f"[Parameters] Ignoring {width}x{height}: does not match aspect ratio {aspect_ratio}")

    if options.get("negative_prompt"):
        params["negative_prompt"] = options["negative_prompt"]
    fps = options.get("frames_per_second")
    if _positive_number(fps):
        params["frames_per_second"] = int(round(fps))
    guidance = options.get("guidance_scale")
    if isinstance(guidance, (int, float)) and not isinstance(guidance, bool):
        params["guidance_scale"] = guidance
    return params


def build_parameters(kind: str, prompt: str, options: Dict[str, Any]) -> Dict[str, Any]:
    if kind == "video":
        return build_video_parameters(prompt, options)
    return build_image_parameters(prompt, options)


def apply_retry_mutation(parameters: Dict[str, Any], transient: TransientError) -> Dict[str, Any]:
    """Return a copy of the request changed to avoid a known transient rejection"""
    mutated = dict(parameters)
    if transient == TransientError.ASPECT_RATIO_REJECTED:
        mutated.pop("aspect_ratio", None)
    elif transient == TransientError.FILE_TOO_SMALL:
        mutated["prompt"] = f"{mutated.get('prompt', '')}, {VIDEO_GENERATION_CONFIG['richness_suffix']}"
    return mutated
