from .config import HostConfig
from .server import HostServer
from .service import TableService

__all__ = ["HostConfig", "HostServer", "TableService"]
