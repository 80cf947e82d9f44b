from blockget.engine import DownloadEngine
from blockget.errors import DownloadError
from blockget.models import DownloadConfig

__all__ = ["DownloadEngine", "DownloadError", "DownloadConfig"]
