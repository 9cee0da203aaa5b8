import os
from dotenv import load_dotenv
from pathlib import Path

load_dotenv()

# credentials
DASHSCOPE_API_KEY = os.getenv("DASHSCOPE_API_KEY", "")

# logging config
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEV").upper()

# file config
BASE_PATH = Path(__file__).parent
LOG_PATH = Path(os.getenv("LOG_PATH", BASE_PATH / "log"))

# DashScope realtime ASR endpoint
# Docs: https://help.aliyun.com/zh/model-studio/qwen-real-time-speech-recognition
ASR_REALTIME_URL = os.getenv("ASR_REALTIME_URL", "wss://dashscope.aliyuncs.com/api-ws/v1/realtime")
ASR_MODEL = os.getenv("ASR_MODEL", "qwen3-asr-flash-realtime")
ASR_CONNECT_TIMEOUT_S = 10.0

# Requested language tag, mapped to a supported code during negotiation (en, ja, ko, es, fr, de, zh).
STT_LANGUAGE = os.getenv("STT_LANGUAGE", "zh")

# Server side VAD. Threshold is fairly low, so quiet speech still opens a turn.
# Silence duration decides how quickly a turn is committed (completed transcript).
ASR_ENABLE_SERVER_VAD = os.getenv("ASR_ENABLE_SERVER_VAD", "1") != "0"
ASR_VAD_THRESHOLD = 0.2
ASR_VAD_SILENCE_DURATION_MS = 800  # milliseconds

# Session negotiation
# The server needs a moment after the socket opens before it accepts session.update.
ASR_NEGOTIATION_DELAY_S = 0.1
# Gate audio on the server's session.updated event instead of the local send.
ASR_WAIT_FOR_SESSION_ACK = os.getenv("ASR_WAIT_FOR_SESSION_ACK", "0") == "1"

# Reconnect policy: attempt n waits n * base delay.
ASR_RECONNECT_BASE_DELAY_S = 2.0
ASR_MAX_RECONNECT_ATTEMPTS = 5

# Language change forces a fresh session after this delay.
ASR_RESTART_DELAY_S = 0.5

# audio
AUDIO_SAMPLE_RATE = 16000
AUDIO_CHANNELS = 1
AUDIO_BLOCK_SIZE = 4096  # samples per capture block
AUDIO_QUEUE_SIZE = 50    # frames waiting for the sender, extra frames are dropped
