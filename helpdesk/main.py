from __future__ import annotations

from pathlib import Path

import uvicorn

from core.api import create_api_app
from core.app import HelpdeskApp
from core.config import load_config
from core.logging import configure_logging


def main() -> None:
    root = Path(__file__).resolve().parent
    config = load_config(root / "config" / "config.yaml")
    configure_logging(config.logging)
    api = create_api_app(HelpdeskApp(config=config, root_dir=root))
    uvicorn.run(
        api,
        host=config.api.host,
        port=config.api.port,
        log_level=config.logging.level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
