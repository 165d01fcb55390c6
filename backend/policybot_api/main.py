from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv

from .config import load_settings
from .app_factory import create_app


_REPO_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=_REPO_ROOT / ".env", override=True)
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
settings = load_settings()

app = create_app(settings)
