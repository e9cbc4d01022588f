from abc import ABC


class Provider(ABC):
    """Base interface for the bot's upstream services (RPC node, Jupiter)."""

    name: str
    timeout_s: float = 10

    async def close(self) -> None:
        """Release pooled connections. Providers without a pool have nothing to do."""
        return None
