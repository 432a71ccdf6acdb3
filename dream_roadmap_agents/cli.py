from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

from .config import EngineSettings
from .workflow import run_workflow_sync


def main() -> None:
    load_dotenv(override=True)

    if not os.getenv("OPENAI_API_KEY"):
        raise SystemExit(
            "OPENAI_API_KEY is not set. Add it to your environment or .env file."
        )

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = EngineSettings.from_env()
    run_workflow_sync(settings)


if __name__ == "__main__":
    main()
