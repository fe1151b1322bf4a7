from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from callscribe.context import Context

from callscribe.constructor import ServerManagerType
from callscribe.server.server import ServerManager

# -------------------------------------------------------------- #
# Constructor for Dynamic Creation of Server Manager
# -------------------------------------------------------------- #


def construct_server_manager(client_type: ServerManagerType, context: "Context") -> "ServerManager":
    """Construct and return a ServerManager instance for the given environment."""

    if client_type == ServerManagerType.TESTING:
        from callscribe.server.testing.constructor import construct_server_manager

        return construct_server_manager(context)
    elif client_type == ServerManagerType.DEVELOPMENT:
        from callscribe.server.dev.constructor import construct_server_manager

        return construct_server_manager(context)
    elif client_type == ServerManagerType.PRODUCTION:
        from callscribe.server.production.constructor import construct_server_manager

        return construct_server_manager(context)

    raise ValueError(f"Unsupported ServerManagerType: {client_type}")
