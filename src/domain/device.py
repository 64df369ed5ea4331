"""
Device label detection from a user agent string.

Produces labels such as "Phone (iOS, Safari)" or "Computer (Windows, Edge)"
used to name an enrolled passkey. Detection never fails: anything that
cannot be recognised falls back to GENERIC_DEVICE_LABEL.
"""

import logging
import re

logger = logging.getLogger(__name__)

GENERIC_DEVICE_LABEL = "My Device"

_MOBILE_RE = re.compile(r"Android|webOS|iPhone|iPod|BlackBerry|IEMobile|Opera Mini", re.IGNORECASE)
_TABLET_RE = re.compile(r"iPad|Android(?!.*Mobile)|Tablet|PlayBook|Kindle|Silk", re.IGNORECASE)

_TYPE_NAMES = {"desktop": "Computer", "mobile": "Phone", "tablet": "Tablet"}


def browser_name(user_agent: str) -> str:
    # Order matters: Edge and Opera UAs also contain "Chrome", Chrome contains "Safari"
    if "Firefox" in user_agent or "FxiOS" in user_agent:
        return "Firefox"
    if "Edg" in user_agent:
        return "Edge"
    if "OPR" in user_agent or "Opera" in user_agent:
        return "Opera"
    if "Chrome" in user_agent or "CriOS" in user_agent:
        return "Chrome"
    if "Safari" in user_agent:
        return "Safari"
    return "Unknown Browser"


def operating_system(user_agent: str) -> str:
    # Mobile platforms first: iOS UAs contain "Mac OS X", Android UAs contain "Linux"
    if "iPhone" in user_agent or "iPad" in user_agent or "iPod" in user_agent:
        return "iOS"
    if "Android" in user_agent:
        return "Android"
    if "Windows" in user_agent:
        return "Windows"
    if "Mac" in user_agent:
        return "macOS"
    if "CrOS" in user_agent:
        return "ChromeOS"
    if "Linux" in user_agent:
        return "Linux"
    return "Unknown OS"


def device_type(user_agent: str) -> str:
    if _TABLET_RE.search(user_agent):
        return "tablet"
    if _MOBILE_RE.search(user_agent):
        return "mobile"
    return "desktop"


def detect_device_label(user_agent: str | None) -> str:
    """
    Build a descriptive device label from a user agent.

    Args:
        user_agent: Raw User-Agent header, may be None

    Returns:
        Label like "Computer (macOS, Chrome)", or GENERIC_DEVICE_LABEL
    """
    if not user_agent or not user_agent.strip():
        return GENERIC_DEVICE_LABEL

    try:
        browser = browser_name(user_agent)
        os_name = operating_system(user_agent)
        kind = device_type(user_agent)
    except TypeError:
        logger.warning("Device detection failed, using generic label")
        return GENERIC_DEVICE_LABEL

    if browser == "Unknown Browser" and os_name == "Unknown OS":
        return GENERIC_DEVICE_LABEL

    return f"{_TYPE_NAMES[kind]} ({os_name}, {browser})"
