"""
============================================================
 FLOWSTATE — Central Configuration
 All tunable thresholds and constants live here.
============================================================
"""

import os
from dotenv import load_dotenv

load_dotenv()

# ── Remote text generation (OpenAI-compatible endpoint) ─────
# Groq first, OpenAI as a second choice (set LLM_BASE_URL and the model
# names to match). An empty key is not an error:
# every remote call then reports "service unavailable" and falls back.
LLM_API_KEY = os.getenv("GROQ_API_KEY") or os.getenv("OPENAI_API_KEY", "")
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://api.groq.com/openai/v1")
NUDGE_MODEL = os.getenv("NUDGE_MODEL", "llama-3.3-70b-versatile")
INSIGHT_MODEL = os.getenv("INSIGHT_MODEL", "llama-3.1-8b-instant")
CHAT_MODEL = os.getenv("CHAT_MODEL", "llama-3.3-70b-versatile")
VISION_MODEL = os.getenv("VISION_MODEL", "meta-llama/llama-4-scout-17b-16e-instruct")
LLM_TIMEOUT = 8.0  # seconds; anything slower falls back to static text

# ── Rate limiting (429 backoff) ─────────────────────────────
LLM_BACKOFF_BASE = 30
LLM_BACKOFF_MAX = 300

# ── Camera ──────────────────────────────────────────────────
CAMERA_INDEX = int(os.getenv("CAMERA_INDEX", 0))
CAMERA_WIDTH = 640
CAMERA_HEIGHT = 480
CAMERA_FPS = 30
CAMERA_RECONNECT_DELAY = 2.0
CAMERA_OPEN_TIMEOUT = 5.0      # wait this long for the first frame
CAMERA_FLIP_HORIZONTAL = True  # mirror view, like a selfie preview

# ── Posture backend ─────────────────────────────────────────
# "landmarks": local MediaPipe face + pose landmarkers (default)
# "vision":    remote multimodal model every VISION_ANALYSIS_INTERVAL
POSTURE_BACKEND = os.getenv("POSTURE_BACKEND", "landmarks")

# ── MediaPipe landmarkers ───────────────────────────────────
FACE_LANDMARKER_MODEL_PATH = os.getenv("FACE_LANDMARKER_MODEL_PATH", "face_landmarker.task")
POSE_LANDMARKER_MODEL_PATH = os.getenv("POSE_LANDMARKER_MODEL_PATH", "pose_landmarker_lite.task")
LANDMARK_MIN_CONFIDENCE = 0.5

# ── Geometric posture estimator ─────────────────────────────
POSTURE_UPDATE_INTERVAL = 0.1    # ~100ms between processed frames
DISTRACTION_THRESHOLD = 0.6      # fused score below this = distracted
HEAD_TILT_MAX_DEGREES = 30.0
SHOULDER_TILT_MAX_DEGREES = 15.0
SHOULDER_VISIBILITY_MIN = 0.5
OFFSET_TO_DEGREES = 180.0        # normalized landmark offset -> approx degrees
HEAD_VERTICAL_WEIGHT = 0.5       # nose vs forehead/chin midpoint
HEAD_HORIZONTAL_WEIGHT = 0.3     # nose vs eye-line midpoint
HEAD_ROLL_WEIGHT = 0.2           # eye-line roll, already in degrees
HEAD_CENTER_TOLERANCE = 0.02     # nose offset (normalized) still "centered"
LOOKING_DOWN_RATIO = 0.12        # nose drop / face height => looking down
FACE_WEIGHT = 0.4
POSE_WEIGHT = 0.6
NEUTRAL_POSTURE_SCORE = 0.5      # nothing detected: neither penalize nor reward

# ── Whole-pose heuristic penalties ──────────────────────────
SHOULDER_ASYMMETRY_GAIN = 3.0
FORWARD_HEAD_GAIN = 2.0
OFF_CENTER_THRESHOLD = 0.3       # fraction of frame width from center
OFF_CENTER_PENALTY = 0.15
SLOUCH_LINE = 0.6                # head below this (lower 40% of frame) = slouching
SLOUCH_PENALTY = 0.2
SHOULDER_TILTED_DEGREES = 5.0    # metrics label only
HUNCHED_HEAD_OFFSET = 0.08       # metrics label only

# ── Simulation fallback ─────────────────────────────────────
SIMULATION_INTERVAL = 4.0
SIMULATION_MAX_DRIFT = 0.15

# ── Object / distraction detector (YOLO) ────────────────────
OBJECT_MODEL_PATH = os.getenv("OBJECT_MODEL_PATH", "yolov8n.pt")
OBJECT_DETECTION_INTERVAL = 5.0  # heavy: never more often than this
OBJECT_CONFIDENCE = 0.3
OBJECT_MAX_FAILURES = 2          # consecutive failures before giving up
OBJECT_FRAME_MAX_WIDTH = 480
OBJECT_FRAME_MAX_HEIGHT = 360
OBJECT_IMAGE_SIZE = 320

PHONE_LABELS = ("cell phone", "mobile phone", "phone", "remote")
CLUTTER_LABELS = (
    "pizza", "donut", "cake", "sandwich", "hot dog", "apple", "orange", "banana",
    "cup", "bottle", "wine glass", "bowl", "fork", "knife", "spoon",
)
STRONG_FOOD_LABELS = ("pizza", "donut", "cake", "sandwich")
DISTRACTING_LABELS = PHONE_LABELS + CLUTTER_LABELS + (
    "book", "tv", "laptop", "mouse", "keyboard",
    "scissors", "teddy bear", "sports ball", "frisbee",
    "handbag", "backpack", "suitcase",
)

# ── Signal fusion ───────────────────────────────────────────
MODE_POSTURE = "posture"
MODE_ENVIRONMENT = "environment"
PHONE_SCORE_CAP = 0.4
LOOKING_DOWN_CLUTTER_CAP = 0.5
ENVIRONMENT_CLUTTER_CAP = 0.4
ENVIRONMENT_ITEM_PENALTY = 0.15
ENVIRONMENT_ITEM_FLOOR = 0.2
ENVIRONMENT_ITEM_LIMIT = 2       # more items than this = distracted

# ── Session / flow ──────────────────────────────────────────
FLOW_FLOWING_AT = 120            # seconds elapsed
FLOW_DEEP_AT = 300
FOCUS_SCORE_EXPONENT = 1.5       # >1: one bad sample drags the average down
DURATION_OPTIONS = (15, 25, 45, 60, 90, 120)  # minutes; 0 = unlimited
STUDY_GOALS = ("reading", "problem-solving", "memorization")
ENERGY_LEVELS = ("low", "medium", "high")

# ── Nudges ──────────────────────────────────────────────────
NUDGE_DEBOUNCE = 1.0
NUDGE_FALLBACK_MESSAGES = {
    "distracted": "It looks like your posture dipped a bit. Want to reset comfortably before continuing?",
    "focused": "Nice focus so far. Staying relaxed can help you keep this momentum.",
}

# ── Reflection insights ─────────────────────────────────────
INSIGHT_FALLBACK_MESSAGES = {
    "excellent": "Great job completing your session! Your focus was excellent, so keep this routine going.",
    "good": "Great job completing your session! Remember to take breaks and stay hydrated.",
    "moderate": "Nice work finishing the session. A quick desk tidy before the next one can make focusing easier.",
    "needs improvement": "Every session counts. Try a shorter block next time with your phone out of reach.",
}

# ── Study companion chat ────────────────────────────────────
CHAT_GREETING = "Hi! I'm Flow, your study companion. How can I help you stay focused today?"
CHAT_ERROR_MESSAGE = "I had a small hiccup. Let's try that again!"
CHAT_HISTORY_LIMIT = 20

# ── Vision analysis backend ─────────────────────────────────
VISION_ANALYSIS_INTERVAL = 3.0
VISION_FRAME_WIDTH = 320
VISION_FRAME_HEIGHT = 240
VISION_JPEG_QUALITY = 60
VISION_DEFAULT_SCORE = 0.7

# ── Web server ──────────────────────────────────────────────
FLOWSTATE_HOST = os.getenv("FLOWSTATE_HOST", "0.0.0.0")
FLOWSTATE_PORT = int(os.getenv("FLOWSTATE_PORT", 8000))
TELEMETRY_EMIT_INTERVAL = 0.25

# ── Database ────────────────────────────────────────────────
DATABASE_URI = os.getenv("DATABASE_URI", "sqlite:///flowstate_sessions.db")
RECENT_SESSION_LIMIT = 20

# ── Version ─────────────────────────────────────────────────
VERSION = "1.0.0"
