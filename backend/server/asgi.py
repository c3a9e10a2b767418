"""
ASGI entry point for the token API.

    uvicorn server.asgi:app
"""

from dotenv import load_dotenv

load_dotenv()

from config import AppConfig  # pylint: disable=wrong-import-position
from server.app import create_app  # pylint: disable=wrong-import-position

app = create_app(AppConfig.load_from_env())
