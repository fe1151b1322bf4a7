import enum

# -------------------------------------------------------------- #
# Server Manager Types
# -------------------------------------------------------------- #


class ServerManagerType(enum.Enum):
    """Environment a ServerManager / ServicesManager pair is built for."""

    TESTING = "testing"
    DEVELOPMENT = "development"
    PRODUCTION = "production"

    @classmethod
    def from_env(cls, value: str | None) -> "ServerManagerType":
        """Resolve an environment name (case-insensitive), defaulting to DEVELOPMENT."""
        if not value:
            return cls.DEVELOPMENT
        try:
            return cls(value.strip().lower())
        except ValueError as e:
            raise ValueError(f"Unsupported environment: {value}") from e
