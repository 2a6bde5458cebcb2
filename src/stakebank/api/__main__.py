# src/stakebank/api/__main__.py
from __future__ import annotations

import uvicorn

from stakebank.env import load_dotenv_if_present
from stakebank.logging_utils import configure_structured_logging


def main() -> None:
    # Load .env early so STAKEBANK_* vars exist before anything reads them.
    load_dotenv_if_present()
    configure_structured_logging()

    # Import after dotenv load (prevents "config read before env" surprises)
    from stakebank.api.app import create_app
    from stakebank.api.config import load_bank_config

    cfg = load_bank_config()
    uvicorn.run(create_app(), host=cfg.host, port=cfg.port, log_level="info")


if __name__ == "__main__":
    main()
