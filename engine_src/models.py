DEFAULT_FPS = 1.0

# Metadata band height as a fraction of frame height (60px on 1080p).
DEFAULT_BAND_FRAC = 60 / 1080
MIN_BAND_HEIGHT = 24

DEFAULT_OCR_LANG = "eng"
DEFAULT_OCR_PSM = 7
DEFAULT_OCR_TIMEOUT_SEC = 30.0
DEFAULT_FFMPEG_TIMEOUT_SEC = 3600.0

DEFAULT_MAX_SPEED_CHANGE_PCT = 50.0
DEFAULT_MAX_SPEED_MPH = 200
DEFAULT_SPEED_CONFIRM_FRAMES = 3
DEFAULT_TIME_CONFIRM_FRAMES = 3
DEFAULT_MAX_TIME_JUMP_SEC = 10.0

MPH_TO_MPS = 0.44704

FRAME_EXT = ".png"
FRAMES_DIRNAME = "frames"
CROPPED_DIRNAME = "cropped"
