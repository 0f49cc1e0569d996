"""ASGI entry point for running the chatgate server via uvicorn CLI.

Used by `chatgate start --detach` to launch the server as a subprocess:
    python -m uvicorn chatgate.server.asgi:app --host ... --port ...
"""

from chatgate.config.loader import load_config
from chatgate.log import setup_logging
from chatgate.server.app import create_app

config = load_config()
setup_logging(config.logging.level, json_format=config.logging.json_format)
app = create_app(config)
