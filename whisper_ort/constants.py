"""Fixed audio and decoding parameters of the Whisper model family."""

SAMPLE_RATE = 16000
N_FFT = 400
HOP_LENGTH = 160
CHUNK_LENGTH = 30  # seconds
N_SAMPLES = CHUNK_LENGTH * SAMPLE_RATE
N_FRAMES = N_SAMPLES // HOP_LENGTH
DEFAULT_N_MELS = 80

LOG_FLOOR = 1e-10
DYNAMIC_RANGE = 8.0

MAX_TOKENS = 448

# Ids used when neither the generation config nor the vocabulary knows a token
SOT_TOKEN_ID = 50258
EOT_TOKEN_ID = 50257
ENGLISH_TOKEN_ID = 50259
TRANSLATE_TOKEN_ID = 50358
TRANSCRIBE_TOKEN_ID = 50359
NO_TIMESTAMPS_TOKEN_ID = 50363
