from .misskey_client import MisskeyApiError, MisskeyClient
from .misskey_stream import MisskeyStream

__all__ = ["MisskeyApiError", "MisskeyClient", "MisskeyStream"]
