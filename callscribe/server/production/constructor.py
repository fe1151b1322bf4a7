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
from callscribe.server.production.postgresql import PostgreSQLServer
from callscribe.server.server import ServerManager

load_dotenv(dotenv_path=".env.local")

# -------------------------------------------------------------- #
# Constructor for Production Server Manager
# -------------------------------------------------------------- #


def load_sql_client() -> PostgreSQLServer:
    """Load and return the SQL client for production."""
    host = os.getenv("SQL_HOST")
    port = int(os.getenv("SQL_PORT", "5432"))
    user = os.getenv("SQL_USER")
    password = os.getenv("SQL_PASSWORD")
    database = os.getenv("SQL_DATABASE")

    if not host or not user or not password or not database:
        raise ValueError("Missing required SQL environment variables.")

    # create PostgreSQL server handler
    sql_handler = PostgreSQLServer(
        host=host, port=port, user=user, password=password, database=database
    )
    return sql_handler


def construct_server_manager(context: "Context") -> ServerManager:
    """
    Construct and return a ServerManager instance for production.

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
