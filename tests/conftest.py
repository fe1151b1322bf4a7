"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides
fixtures and configuration that can be used across all tests.
"""

from collections.abc import Awaitable, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

# Configure pytest-asyncio
pytest_plugins = ("pytest_asyncio",)


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom settings and markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    """Apply a timeout to all tests except those marked as slow."""
    for item in items:
        if "slow" not in item.keywords:
            item.add_marker(pytest.mark.timeout(30))


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def shared_test_log_file(tmp_path_factory) -> str:
    """
    Create a single shared log file for all tests in the session.

    This prevents creating a new timestamped log file for each test,
    consolidating all test logs into one file for easier debugging.

    Returns:
        str: Path to the shared log file
    """
    from datetime import datetime

    logs_dir = tmp_path_factory.mktemp("logs")
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return str(logs_dir / f"test_run_{timestamp}.log")


@pytest.fixture
def mock_logging_service() -> MagicMock:
    """Create a mock async logging service."""
    logging_service = MagicMock()
    logging_service.debug = AsyncMock()
    logging_service.info = AsyncMock()
    logging_service.warning = AsyncMock()
    logging_service.error = AsyncMock()
    logging_service.critical = AsyncMock()
    return logging_service


# ============================================================================
# Testing Environment Fixtures (in-memory database and scripted providers)
# ============================================================================


@pytest.fixture
async def test_context():
    """
    Create a test context instance.

    Yields:
        Context: Test context instance
    """
    from callscribe.context import Context

    context = Context()
    yield context


@pytest.fixture
async def test_server_manager(test_context):
    """
    Create and connect a test server manager.

    This fixture provides a ServerManager instance with:
    - In-memory SQLite database
    - In-memory object storage
    - Scripted primary and secondary speech-to-text providers
    - Mock language model

    Args:
        test_context: Test context from test_context fixture

    Yields:
        ServerManager: Connected test server manager instance
    """
    from callscribe.constructor import ServerManagerType
    from callscribe.server.constructor import construct_server_manager

    server = construct_server_manager(ServerManagerType.TESTING, test_context)
    test_context.set_server_manager(server)
    await server.connect_all()

    yield server

    if server.is_initialized:
        await server.disconnect_all()


@pytest.fixture
async def test_sql_client(test_server_manager):
    """Get the in-memory SQL client from test server manager."""
    yield test_server_manager.sql_client


@pytest.fixture
async def services_manager(test_server_manager, shared_test_log_file):
    """
    Create and initialize a services manager on top of the test servers.

    Job attempts time out after 5 seconds and retries start without back-off.

    Yields:
        ServicesManager: Initialized services manager instance
    """
    from callscribe.constructor import ServerManagerType
    from callscribe.services.constructor import construct_services_manager

    services = construct_services_manager(
        ServerManagerType.TESTING,
        context=test_server_manager.context,
        log_file=shared_test_log_file,
        use_timestamp_logs=False,
        console_output=False,
        workers=2,
        timeout_seconds=5.0,
    )
    test_server_manager.context.set_services_manager(services)
    await services.initialize_all()

    yield services

    await services.shutdown_all(timeout=10.0)


# ============================================================================
# Data Fixtures
# ============================================================================


@pytest.fixture
def owner_id() -> str:
    return "user-owner-0001"


@pytest.fixture
def seed_call(services_manager, test_server_manager, owner_id) -> Callable[..., Awaitable[dict]]:
    """
    Factory inserting a call row (and its audio object) for the owner.

    Returns:
        Async function(**overrides) -> call row
    """

    async def _seed_call(
        user_id: str | None = None,
        filename: str | None = "recording.mp3",
        audio_path: str | None = "uploads/recording.mp3",
        duration_seconds: float | None = 120.0,
        direction=None,
        team_id: str | None = None,
        with_audio: bool = True,
    ) -> dict:
        from callscribe.server.sql_models import CallDirection
        from callscribe.services.access_gateway.manager import AccessGatewayManagerService

        user_id = user_id or owner_id
        call_id = await services_manager.call_sql_manager.insert_call(
            user_id=user_id,
            filename=filename,
            audio_path=audio_path,
            duration_seconds=duration_seconds,
            direction=direction or CallDirection.OUTBOUND,
            team_id=team_id,
        )
        call = await services_manager.call_sql_manager.get_call(call_id)

        if with_audio and (audio_path or filename):
            path = AccessGatewayManagerService.audio_object_path(call)
            test_server_manager.storage_client.put_object(path)

        return call

    return _seed_call


@pytest.fixture
def sample_transcript() -> str:
    """Provide a sample call transcript for testing."""
    return (
        "Thanks for calling solar dental, this is Maria. "
        "I would like to book a cleaning for next Tuesday."
    )
