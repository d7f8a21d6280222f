"""
============================================================
 FLOWSTATE — Reflection Insight Requester
 One call at session end; any failure gives a static line
 picked by the focus rating bucket.
============================================================
"""

import asyncio
import logging
from typing import Optional

import config
from flowstate.llm import ServiceUnavailable
from flowstate.prompts import insight_messages
from flowstate.session import focus_rating

logger = logging.getLogger(__name__)


def fallback_insight(average_focus_score: float) -> str:
    return config.INSIGHT_FALLBACK_MESSAGES[focus_rating(average_focus_score)]


async def request_insight(llm, average_focus_score: float, session_duration_sec: int,
                          study_goal: Optional[str] = None,
                          energy_level: Optional[str] = None,
                          model: str = config.INSIGHT_MODEL) -> str:
    """Never raises: returns model text or the rating-keyed fallback."""
    rating = focus_rating(average_focus_score)
    try:
        text = await asyncio.wait_for(
            llm.complete(
                model,
                insight_messages(average_focus_score, session_duration_sec,
                                 study_goal, energy_level, rating),
                max_tokens=150,
                temperature=0.7,
            ),
            timeout=config.LLM_TIMEOUT + 2,
        )
        logger.info("[INSIGHT] Generated (%s)", rating)
        return text
    except ServiceUnavailable as e:
        logger.warning("[INSIGHT] Service unavailable (%s), using fallback", e)
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("[INSIGHT] Request failed, using fallback")
    return fallback_insight(average_focus_score)
