# Acceptance bound on raw Euclidean distance; tuned for a 512-d FaceNet-style
# model and needs recalibration for any other embedding model.
DEFAULT_THRESHOLD = 0.7

# Square model input side, in pixels.
DEFAULT_INPUT_SIZE = 112
SUPPORTED_INPUT_SIZES = (112, 160)

DEFAULT_EMBEDDING_DIM = 512

# InsightFace detector input size.
DEFAULT_DET_SIZE = 640

# Font candidates for unicode labels (macOS/Windows/Linux); CJK-capable fonts first.
FONT_LIST = [
    # macOS
    "/System/Library/Fonts/STHeiti Medium.ttc",
    "/System/Library/Fonts/AppleGothic.ttf",
    "/Library/Fonts/Arial Unicode.ttf",
    # Windows
    "C:\\Windows\\Fonts\\msyh.ttc",
    "C:\\Windows\\Fonts\\arialuni.ttf",
    # Linux
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/wqy/wqy-zenhei.ttc",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
]
