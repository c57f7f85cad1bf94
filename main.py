# file: main.py
"""Entry point for the Twilio <-> OpenAI Realtime voice bridge."""
import logging

from fastapi import FastAPI

from config import HOST, PORT, LOG_LEVEL, validate_config
from routes import Routes

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

# audio format and credentials are checked once, before any call is accepted
validate_config()

app = FastAPI(title="Realtime Voice Bridge")
Routes(app)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT)
