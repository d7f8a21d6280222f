"""
============================================================
 FLOWSTATE — Prompt Builders
 Every message sent to the remote text service is built
 here, so tone rules live in one place.
============================================================
"""

from typing import List, Optional

# ── Per-goal context ────────────────────────────────────────
GOAL_CONTEXTS = {
    "problem-solving": {
        "focused": "They are working through hard problems and thinking analytically.",
        "distracted": "They may be stuck on a problem and could use a mental reset.",
        "tip": "Suggest stepping back, splitting the problem into smaller parts, or trying another angle.",
    },
    "reading": {
        "focused": "They are taking in material and keeping a steady reading pace.",
        "distracted": "Their reading attention has drifted.",
        "tip": "Suggest active reading: a one-line summary or a quick margin note.",
    },
    "memorization": {
        "focused": "They are actively committing information to memory.",
        "distracted": "Their memorization rhythm has been interrupted.",
        "tip": "Suggest spaced repetition or building a vivid association.",
    },
    "general": {
        "focused": "They are keeping good study focus.",
        "distracted": "Their attention has wandered a little.",
        "tip": "Offer gentle encouragement to come back to the task.",
    },
}

# ── Per-energy tone ─────────────────────────────────────────
ENERGY_TONES = {
    "low": {
        "style": "Extra gentle. Acknowledge that energy is limited.",
        "suggest": "a short break, some water, a light stretch or an easier task",
        "avoid": "Do not sound demanding or add pressure.",
    },
    "medium": {
        "style": "Balanced and supportive.",
        "suggest": "a pomodoro block, mixing task types or a brief breathing pause",
        "avoid": "Do not be pushy, and do not be passive either.",
    },
    "high": {
        "style": "Upbeat and motivating, matching their energy.",
        "suggest": "tackling the hardest part now or a longer deep-work block",
        "avoid": "Do not sound sleepy or slow.",
    },
}

TONE_RULES = (
    "- Warm and non-judgmental\n"
    "- Never shame productivity\n"
    "- No medical or mental health language\n"
    "- No commands like \"you must\" or \"stop\"\n"
)


def normalize_goal(study_goal: Optional[str]) -> str:
    goal = (study_goal or "general").strip().lower().replace(" ", "-")
    return goal if goal in GOAL_CONTEXTS else "general"


def normalize_energy(energy_level: Optional[str]) -> str:
    energy = (energy_level or "medium").strip().lower()
    return energy if energy in ENERGY_TONES else "medium"


def nudge_messages(is_distracted: bool, study_goal: Optional[str],
                   energy_level: Optional[str]) -> List[dict]:
    goal = normalize_goal(study_goal)
    energy = normalize_energy(energy_level)
    ctx = GOAL_CONTEXTS[goal]
    tone = ENERGY_TONES[energy]
    state = "distracted" if is_distracted else "focused"

    system = (
        "You are a calm, supportive study companion for FLOWSTATE.\n"
        "Write ONE short sentence (max 25 words) that gently encourages the user.\n\n"
        f"STUDY GOAL: {study_goal or 'general study'}\n"
        f"{ctx[state]}\n"
        f"Goal-specific tip: {ctx['tip']}\n\n"
        f"ENERGY LEVEL: {energy}\n"
        f"Tone: {tone['style']}\n"
        f"Consider suggesting: {tone['suggest']}.\n"
        f"{tone['avoid']}\n\n"
        f"CURRENT STATE: {'attention or posture has dipped' if is_distracted else 'good focus and posture'}\n\n"
        f"RULES:\n{TONE_RULES}"
        "Respond with ONLY the nudge sentence."
    )
    if is_distracted:
        user = f"Write a {energy}-energy nudge for someone doing {goal} who needs to refocus."
    else:
        user = f"Write a {energy}-energy encouragement for someone doing {goal} well."
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def insight_messages(average_focus_score: float, session_duration_sec: int,
                     study_goal: Optional[str], energy_level: Optional[str],
                     rating: str) -> List[dict]:
    mins = int(session_duration_sec) // 60
    system = (
        "You are a supportive study coach giving a brief, actionable insight after a "
        "study session. Two or three sentences at most. Encouraging but honest."
    )
    user = (
        f"The student just completed a {mins} minute {study_goal or 'study'} session.\n"
        f"Their average focus score was {average_focus_score * 10:.1f}/10 ({rating}).\n"
        f"Their energy level was {energy_level or 'unknown'}.\n\n"
        "Give one personalized observation about the session and one specific tip "
        "for the next one."
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def chat_system_prompt(study_goal: Optional[str], energy_level: Optional[str]) -> str:
    return (
        "You are Flow, a calm and supportive AI study companion for FLOWSTATE.\n\n"
        "You help users keep their focus during study sessions, offer gentle "
        "encouragement and practical tips, and answer questions about studying "
        "and focus techniques.\n\n"
        f"TONE:\n{TONE_RULES}"
        "- Two or three sentences unless asked for more\n\n"
        f"User's study goal: {study_goal or 'general study'}\n"
        f"User's energy level: {energy_level or 'not specified'}\n\n"
        "You are a companion, not a productivity coach or a therapist."
    )


VISION_SYSTEM_PROMPT = (
    "You assess webcam images of a person studying at a desk.\n\n"
    "postureScore (0.0-1.0): 0.9+ head over shoulders and upright; 0.7 slight forward "
    "head; 0.5 visible slouch or leaning; 0.3 heavy hunch; 0.1 slumped or head on desk.\n"
    "phoneDetected: any phone in hand, on the desk or on the lap, even partly visible.\n"
    "deskCluttered: food, snacks, gaming devices or scattered non-study items. "
    "A single water bottle and tidy study material do not count.\n"
    "lookingDown: head tilted clearly downward toward desk or lap.\n"
    "isDistracted: looking away, using a phone, eyes closed, or busy with non-study items.\n"
    "distractingItems: short names of distracting objects you can see.\n\n"
    "Respond with ONLY JSON, no markdown:\n"
    '{"postureScore":0.8,"isDistracted":false,"phoneDetected":false,'
    '"lookingDown":false,"deskCluttered":false,"distractingItems":[],'
    '"brief":"Encouraging 5-10 word message"}'
)


def vision_messages(frame_b64: str) -> List[dict]:
    return [
        {"role": "system", "content": VISION_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": "Analyze this study session image. Return JSON only."},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:image/jpeg;base64,{frame_b64}", "detail": "low"},
                },
            ],
        },
    ]
