"""Configuration for the generation job orchestrator"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Server Configuration
PORT = int(os.getenv('PORT', '3011'))
HOST = os.getenv('HOST', 'localhost')
SERVER_BASE_URL = os.getenv('CLIENT_SERVER_URL', f"http://localhost:{PORT}")

# Output Configuration
OUTPUT_DIR = Path(os.getenv('OUTPUT_DIR', './public/generated'))

# MCP Server Configuration
MCP_CONFIG_PATH = os.getenv('MCP_CONFIG_PATH', str(Path.home() / '.claude' / 'mcp-kamui-code.json'))
MCP_CONFIG_CANDIDATES = [
    'KAMUI CODE.json',
    'KAMUI CODE.JSON',
    'mcp-kamui-code.json',
    'kamui-code.json'
]
MCP_REQUEST_TIMEOUT = 60.0  # seconds per tool call

# Default services (None = first registered service of that kind)
DEFAULT_IMAGE_SERVICE = os.getenv('DEFAULT_IMAGE_MODEL') or None
DEFAULT_VIDEO_SERVICE = os.getenv('DEFAULT_VIDEO_MODEL') or None

# Progress fan-out (empty = in-process only)
REDIS_URL = os.getenv('REDIS_URL', '')

# Retry Configuration
MAX_OUTER_RETRIES = 2
MEDIA_FETCH_RETRIES = 3
MEDIA_FETCH_RETRY_DELAY = 1.0  # seconds, multiplied by attempt number
MEDIA_FETCH_TIMEOUT = 30.0  # seconds
PROGRESS_IDLE_TIMEOUT = float(os.getenv('PROGRESS_IDLE_TIMEOUT', '300'))  # seconds without events before a stream closes

# Aspect ratio presets
# Accepts ratio strings directly as well as preset names
ASPECT_RATIO_PRESETS = {
    "horizontal": "16:9",
    "vertical": "9:16",
    "square": "1:1",
    "16:9": "16:9",
    "9:16": "9:16",
    "1:1": "1:1"
}

# Video resolution tiers (base height in pixels)
VIDEO_RESOLUTION_BASE_HEIGHT = {
    "720p": 720,
    "580p": 580,
    "480p": 480
}

# Image Generation Settings
IMAGE_GENERATION_CONFIG = {
    "max_poll_attempts": 30,
    "poll_interval": 2.0,  # flat interval, seconds
    "default_extension": "png",
    "default_width": 512,
    "default_height": 512,
    "default_steps": 4,
    "default_guidance": 1.0,
    "quality_suffix": "high quality, detailed, photorealistic, 8k resolution, sharp focus, masterpiece, best quality"
}

# Video Generation Settings
VIDEO_GENERATION_CONFIG = {
    "max_poll_attempts": 120,  # up to ~20 minutes
    "base_interval": 8.0,  # seconds
    "fast_interval": 3.0,  # services whose name contains "fast"
    "elapsed_floor_after": 300.0,  # 5 minutes
    "elapsed_floor_interval": 15.0,
    "stuck_threshold": 3,
    "stuck_multiplier": 1.5,
    "max_interval": 30.0,
    "default_extension": "mp4",
    "default_aspect_ratio": "16:9",
    "default_resolution": "720p",
    "default_duration": 3,
    "enable_safety_checker": True,
    "enable_prompt_expansion": True,
    "quality_suffix": (
        "smooth movements, high quality, detailed textures, natural lighting, cinematic composition, "
        "professional cinematography, 4K resolution, dynamic camera work, realistic rendering, "
        "fine details, vibrant colors, depth of field"
    ),
    # Appended on "file size is too small" rejections
    "richness_suffix": (
        "longer duration scenes, complex movements, multiple camera angles, rich textures, "
        "detailed backgrounds, smooth transitions, extended sequences, comprehensive storytelling, "
        "intricate details, elaborate cinematography, dynamic lighting changes, varied compositions, "
        "professional video production, high bitrate, detailed rendering"
    )
}

GENERATION_CONFIGS = {
    "image": IMAGE_GENERATION_CONFIG,
    "video": VIDEO_GENERATION_CONFIG
}

# Browser-like request headers for media CDNs that reject default client identifiers
MEDIA_FETCH_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache"
}
MEDIA_ACCEPT = {
    "image": "image/webp,image/apng,image/*,*/*;q=0.8",
    "video": "video/mp4,video/*,*/*;q=0.8"
}
