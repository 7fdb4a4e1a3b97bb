"""
davbackup - WebDAV backup and restore for launcher data directories

Backs up selected subdirectories of a host application's data folder
(Flow Launcher by default) to a WebDAV server and restores them on demand.

Key Features:
    - Zips the selected data directories and uploads them with PUT
    - Creates the remote backup folder with MKCOL when needed
    - Downloads a backup and restores it out-of-process, so the host can
      be stopped while its files are replaced
    - Never overwrites the installation folder of the running plugin
    - Keeps the WebDAV password encrypted at rest
"""

__version__ = "0.1.0"
__author__ = ""
__email__ = ""

from davbackup.config.settings import Settings, load_config

__all__ = [
    "__version__",
    "Settings",
    "load_config",
]
