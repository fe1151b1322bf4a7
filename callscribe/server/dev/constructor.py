import os
from typing import TYPE_CHECKING

from dotenv import load_dotenv

if TYPE_CHECKING:
    from callscribe.context import Context

from callscribe.server.common.providers import (
    load_language_model_client,
    load_speech_to_text_providers,
    load_storage_client,
)
from callscribe.server.server import ServerManager
from callscribe.server.testing.sqlite import SQLiteServer

load_dotenv(dotenv_path=".env.local")

# -------------------------------------------------------------- #
# Constructor for Development Server Manager
# -------------------------------------------------------------- #


def load_sql_client() -> SQLiteServer:
    """Load and return the file-backed SQLite client for development."""
    database_path = os.getenv("SQLITE_PATH", "./data/callscribe.db")
    parent = os.path.dirname(database_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    return SQLiteServer(name="dev_sqlite", database_path=database_path)


def construct_server_manager(context: "Context") -> ServerManager:
    """
    Construct and return a ServerManager instance for development.

    Args:
        context: Context instance to pass to ServerManager

    Returns:
        Configured ServerManager instance
    """
    primary_provider, secondary_provider = load_speech_to_text_providers()

    server_manager = ServerManager(
        context=context,
        sql_client=load_sql_client(),
        storage_client=load_storage_client(),
        primary_provider=primary_provider,
        secondary_provider=secondary_provider,
        language_model_client=load_language_model_client(),
    )

    return server_manager
