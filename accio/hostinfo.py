"""Platform lookups used for defaults and the startup banner."""

import os
import socket
import sys
from pathlib import Path
from typing import List, Optional

UPLOADS_FOLDER_NAME = "accio"
XDG_DOWNLOAD_KEY = "XDG_DOWNLOAD_DIR="


def home_directory() -> Optional[Path]:
    if sys.platform.startswith("win"):
        profile = os.environ.get("USERPROFILE")
        if profile:
            return Path(profile)
        drive, path = os.environ.get("HOMEDRIVE"), os.environ.get("HOMEPATH")
        if drive and path:
            return Path(drive + path)

    home = os.environ.get("HOME")
    return Path(home) if home else None


def _strip_quotes(text: str) -> str:
    if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        return text[1:-1]
    return text


def _expand_user_dir(value: str, home: Path) -> str:
    result = []
    index = 0
    while index < len(value):
        char = value[index]
        if value.startswith("$HOME", index):
            result.append(str(home))
            index += 5
            continue
        if char == "~" and index == 0:
            result.append(str(home))
        elif char == "\\" and index + 1 < len(value):
            index += 1
            result.append(value[index])
        else:
            result.append(char)
        index += 1
    return "".join(result)


def parse_xdg_download_dir(home: Path) -> Optional[Path]:
    """Read ``XDG_DOWNLOAD_DIR`` from ``~/.config/user-dirs.dirs``."""

    config_path = home / ".config" / "user-dirs.dirs"
    try:
        lines = config_path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return None

    for line in lines:
        line = line.split("#", 1)[0].strip()
        if not line.startswith(XDG_DOWNLOAD_KEY):
            continue
        value = _strip_quotes(line[len(XDG_DOWNLOAD_KEY):])
        expanded = _expand_user_dir(value, home)
        if expanded:
            return Path(expanded)
    return None


def default_downloads_directory() -> Optional[Path]:
    home = home_directory()
    if home is None:
        return None
    if os.name == "posix" and sys.platform != "darwin":
        xdg = parse_xdg_download_dir(home)
        if xdg is not None:
            return xdg
    return home / "Downloads"


def default_uploads_directory(base_dir: Path) -> Path:
    downloads = default_downloads_directory()
    if downloads is not None:
        return downloads / UPLOADS_FOLDER_NAME
    return base_dir / UPLOADS_FOLDER_NAME


def _default_route_address() -> Optional[str]:
    # Connecting a UDP socket sends nothing; it only selects the outbound interface.
    probe = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        probe.connect(("192.0.2.1", 80))
        return probe.getsockname()[0]
    except OSError:
        return None
    finally:
        probe.close()


def local_network_addresses() -> List[str]:
    """Return non-loopback addresses this host is likely reachable on."""

    addresses: List[str] = []
    candidates = []
    try:
        candidates = [info[4][0] for info in socket.getaddrinfo(socket.gethostname(), None)]
    except OSError:
        pass
    route_address = _default_route_address()
    if route_address:
        candidates.insert(0, route_address)

    for address in candidates:
        address = address.split("%", 1)[0]
        if address.startswith("127.") or address in {"::1", "0.0.0.0"} or address.startswith("fe80:"):
            continue
        if address not in addresses:
            addresses.append(address)
    return addresses
