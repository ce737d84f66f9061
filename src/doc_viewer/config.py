import logging
import os
from pathlib import Path

# Intake rules
ALLOWED_TYPES = [
    t.strip()
    for t in os.getenv(
        "ALLOWED_TYPES",
        ",".join([
            "image/jpeg",
            "image/jpg",
            "image/png",
            "image/gif",
            "application/pdf",
            "application/msword",  # legacy .doc
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",  # docx
        ]),
    ).split(",")
    if t.strip()
]
MAX_UPLOAD_MB = float(os.getenv("MAX_UPLOAD_MB", "10"))

# Storage
DATA_DIR = Path(os.getenv("DATA_DIR", "./data")).resolve()
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8080").rstrip("/")

# Preview engine
ADAPTER_TIMEOUT_SEC = float(os.getenv("ADAPTER_TIMEOUT_SEC", "60"))
FETCH_TIMEOUT_SEC = float(os.getenv("FETCH_TIMEOUT_SEC", "30"))
MIN_DOCUMENT_BYTES = int(os.getenv("MIN_DOCUMENT_BYTES", "100"))
ONLINE_VIEWER_URL = os.getenv(
    "ONLINE_VIEWER_URL", "https://view.officeapps.live.com/op/embed.aspx?src={src}"
)
IMAGE_PREVIEW_PX = int(os.getenv("IMAGE_PREVIEW_PX", "256"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging(level: str = LOG_LEVEL) -> None:
    """Install a console handler on the root logger unless one is already configured."""
    root = logging.getLogger()
    root.setLevel(level)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    if root.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", "%Y-%m-%d %H:%M:%S")
    )
    root.addHandler(handler)
