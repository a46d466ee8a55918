"""
Entry point for running the rehearsal server.

Usage:
    python -m rehearsal

Host, port and log level come from HOST / PORT / LOG_LEVEL (see rehearsal.config).
"""
import uvicorn

from logging_setup import setup_logging
from voice_turn.config import load_env_files
from rehearsal.config import ServerConfig


def main() -> None:
    load_env_files()
    server_config = ServerConfig.from_env()

    # Initialize logging
    setup_logging(level=server_config.log_level, use_json=server_config.log_json)

    uvicorn.run(
        "rehearsal.server:app",
        host=server_config.host,
        port=server_config.port,
        log_level=server_config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
