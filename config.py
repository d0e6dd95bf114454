"""Configuration settings for the asset refinement loop."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Paths
PROJECT_ROOT = Path(__file__).parent
OUTPUTS_DIR = Path(os.getenv("OUTPUTS_DIR", PROJECT_ROOT / "outputs"))

# API Keys (loaded from .env)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")

# LLM Provider: "openai" or "anthropic"
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openai")
OPENAI_VISION_MODEL = os.getenv("OPENAI_VISION_MODEL", "gpt-4o")
OPENAI_CHAT_MODEL = os.getenv("OPENAI_CHAT_MODEL", "gpt-4o-mini")
ANTHROPIC_VISION_MODEL = os.getenv("ANTHROPIC_VISION_MODEL", "claude-sonnet-4-20250514")
ANTHROPIC_CHAT_MODEL = os.getenv("ANTHROPIC_CHAT_MODEL", "claude-sonnet-4-20250514")

# Image model settings
SD3_MODEL_ID = "stabilityai/stable-diffusion-3-medium-diffusers"
SD3_INPAINT_MODEL_ID = os.getenv("SD3_INPAINT_MODEL_ID", SD3_MODEL_ID)
IMAGE_SIZE = 1024
NUM_INFERENCE_STEPS = 28
GUIDANCE_SCALE = 7.0
EDIT_STRENGTH = float(os.getenv("EDIT_STRENGTH", "0.85"))

# Loop settings (scores are on a 0-1 scale)
FIX_THRESHOLD = float(os.getenv("FIX_THRESHOLD", "0.95"))      # Below this: localized fix
REGEN_THRESHOLD = float(os.getenv("REGEN_THRESHOLD", "0.70"))  # Below this: full regeneration
MAX_ITERATIONS = int(os.getenv("MAX_ITERATIONS", "5"))          # Hard limit on iterations
MASK_MARGIN = int(os.getenv("MASK_MARGIN", "70"))               # Pixels added around merged defects

# Per-call timeouts in seconds
SCORING_TIMEOUT = float(os.getenv("SCORING_TIMEOUT", "120"))
SYNTHESIS_TIMEOUT = float(os.getenv("SYNTHESIS_TIMEOUT", "600"))
EDIT_TIMEOUT = float(os.getenv("EDIT_TIMEOUT", "600"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Default negative prompt
DEFAULT_NEGATIVE_PROMPT = (
    "blurry, low quality, distorted, deformed, ugly, bad anatomy, "
    "bad proportions, extra limbs, cloned face, disfigured, "
    "out of frame, watermark, signature, text"
)
