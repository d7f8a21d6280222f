"""
============================================================
 FLOWSTATE — Vision Analysis Backend
 Alternative to local landmarks: a downscaled JPEG goes to
 a multimodal model and the first JSON object in its reply
 is read with neutral defaults for anything missing.
============================================================
"""

import asyncio
import base64
import json
import logging
from typing import NamedTuple, Optional

import cv2
import numpy as np

import config
from flowstate.geometry import clamp
from flowstate.llm import ServiceUnavailable
from flowstate.models import EstimatorReading
from flowstate.prompts import vision_messages

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "Analysis unavailable"
DEFAULT_MESSAGE = "Looking good!"


class VisionResult(NamedTuple):
    reading: EstimatorReading
    phone_detected: bool
    desk_cluttered: bool
    distracting_items: frozenset
    analysis: str


def encode_frame(frame: np.ndarray) -> str:
    """Downscale to 320x240 and JPEG-encode as base64 text."""
    small = cv2.resize(frame, (config.VISION_FRAME_WIDTH, config.VISION_FRAME_HEIGHT),
                       interpolation=cv2.INTER_AREA)
    ok, jpeg = cv2.imencode(".jpg", small, [cv2.IMWRITE_JPEG_QUALITY, config.VISION_JPEG_QUALITY])
    if not ok:
        raise ValueError("JPEG encoding failed")
    return base64.b64encode(jpeg.tobytes()).decode("ascii")


def extract_json_block(text: Optional[str]) -> Optional[dict]:
    """First {...} object in free-form text (code fences and commentary allowed)."""
    if not text:
        return None
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except (json.JSONDecodeError, TypeError):
        pass
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            data, _ = decoder.raw_decode(text, start)
            if isinstance(data, dict):
                return data
        except json.JSONDecodeError:
            pass
        start = text.find("{", start + 1)
    return None


def _flag(data: dict, key: str) -> bool:
    value = data.get(key)
    return value if isinstance(value, bool) else False


def interpret_analysis(data: Optional[dict]) -> VisionResult:
    """Apply defaults, the combined distraction rule and the score caps."""
    data = data or {}
    raw_score = data.get("postureScore")
    if isinstance(raw_score, (int, float)) and not isinstance(raw_score, bool) and raw_score > 0:
        score = clamp(float(raw_score))
    else:
        score = config.VISION_DEFAULT_SCORE

    phone = _flag(data, "phoneDetected")
    looking_down = _flag(data, "lookingDown")
    cluttered = _flag(data, "deskCluttered")
    raw_items = data.get("distractingItems")
    items = frozenset()
    if isinstance(raw_items, list):
        items = frozenset(i.strip().lower() for i in raw_items if isinstance(i, str) and i.strip())

    distracted = _flag(data, "isDistracted") or phone or (looking_down and cluttered)
    if phone:
        score = min(score, config.PHONE_SCORE_CAP)
    if looking_down and cluttered:
        score = min(score, config.LOOKING_DOWN_CLUTTER_CAP)

    if phone:
        message = "Phone spotted! Maybe tuck it away for better focus."
    elif looking_down and cluttered:
        message = "Your desk looks busy; a quick tidy might help focus."
    elif looking_down:
        message = "Taking notes? Great! Keep that posture comfortable."
    else:
        brief = data.get("brief")
        message = brief if isinstance(brief, str) and brief.strip() else DEFAULT_MESSAGE

    reading = EstimatorReading(
        posture_score=score,
        is_distracted=distracted,
        face_detected=bool(data),
        looking_down=looking_down,
    )
    return VisionResult(reading, phone, cluttered, items, message)


def neutral_result(message: str = UNAVAILABLE_MESSAGE) -> VisionResult:
    result = interpret_analysis(None)
    return result._replace(analysis=message)


class VisionAnalyzer:
    """Sends one frame at a time to the multimodal model. analyze() never raises."""

    def __init__(self, llm, model: str = config.VISION_MODEL) -> None:
        self._llm = llm
        self.model = model

    async def analyze(self, frame: np.ndarray) -> VisionResult:
        try:
            frame_b64 = await asyncio.to_thread(encode_frame, frame)
            text = await self._llm.complete(self.model, vision_messages(frame_b64),
                                            max_tokens=200, temperature=0.2)
        except ServiceUnavailable as e:
            logger.warning("[VISION] Service unavailable (%s), neutral reading", e)
            return neutral_result()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[VISION] Analysis failed, neutral reading")
            return neutral_result()

        data = extract_json_block(text)
        if data is None:
            logger.warning("[VISION] No JSON object in reply, neutral reading")
        return interpret_analysis(data)
