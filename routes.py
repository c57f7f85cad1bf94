"""
FastAPI routes for Twilio call setup, health checks and the media stream.
"""
import logging

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import HTMLResponse, JSONResponse
from twilio.twiml.voice_response import VoiceResponse, Connect

import config
from websocket_handler import WebSocketHandler

logger = logging.getLogger(__name__)

MEDIA_STREAM_PATH = "/media-stream"


class Routes:
    """Contains all FastAPI route handlers."""

    def __init__(self, app: FastAPI):
        self.app = app
        self._setup_routes()

    def _setup_routes(self):
        """Setup all route handlers."""
        self.app.get("/", response_class=JSONResponse)(self.health_check)
        self.app.get("/health", response_class=JSONResponse)(self.health_check)
        self.app.api_route("/incoming-call", methods=["GET", "POST"])(self.handle_incoming_call)
        self.app.websocket(MEDIA_STREAM_PATH)(self.media_stream)

    async def health_check(self):
        return {"status": "ok"}

    async def handle_incoming_call(self, request: Request):
        """Answer Twilio's voice webhook with TwiML connecting the call to our media stream."""
        response = VoiceResponse()
        if config.TWIML_GREETING:
            response.say(
                config.TWIML_GREETING,
                voice=config.TWIML_GREETING_VOICE,
                language=config.TWIML_GREETING_LANGUAGE,
            )
        connect = Connect()
        stream_url = f"wss://{self._public_host(request)}{MEDIA_STREAM_PATH}"
        connect.stream(url=stream_url)
        response.append(connect)
        logger.info("Using WebSocket URL: %s", stream_url)
        return HTMLResponse(content=str(response), media_type="application/xml")

    async def media_stream(self, websocket: WebSocket):
        await WebSocketHandler.handle_media_stream(websocket)

    @staticmethod
    def _public_host(request: Request) -> str:
        if config.PUBLIC_HOST:
            return config.PUBLIC_HOST
        return (
            request.headers.get("x-forwarded-host")
            or request.headers.get("host")
            or request.url.hostname
        )
