import re
from enum import Enum, auto
from urllib.parse import parse_qs, urlparse


class InputType(Enum):
    VIDEO_URL = auto()
    CATALOG_TRACK = auto()
    SEARCH_QUERY = auto()


_CATALOG_TRACK_RE = re.compile(r"spotify\.com/(?:intl-[a-z]+/)?track/([A-Za-z0-9]*)")

_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")

CANONICAL_WATCH_URL = "https://www.youtube.com/watch?v={}"


def classify(query: str) -> tuple[InputType, str]:
    """Return (InputType, cleaned_value) for a user query.

    For catalog links the cleaned value is the track id, which is empty when
    the link carries none. For video links and search queries it's the
    stripped query.
    """
    query = query.strip()

    m = _CATALOG_TRACK_RE.search(query)
    if m:
        return InputType.CATALOG_TRACK, m.group(1)

    if "youtube.com/watch" in query or "youtu.be/" in query:
        return InputType.VIDEO_URL, query

    return InputType.SEARCH_QUERY, query


def extract_video_id(url: str) -> str | None:
    """Pull the video id out of a short link or a parameterized watch link."""
    if "youtu.be/" in url:
        video_id = url.split("youtu.be/", 1)[1].split("?")[0].split("&")[0].strip("/")
    elif "youtube.com/watch" in url:
        if "://" not in url:
            url = "https://" + url
        video_id = parse_qs(urlparse(url).query).get("v", [""])[0]
    else:
        return None
    if not _VIDEO_ID_RE.match(video_id):
        return None
    return video_id


def normalize_video_url(url: str) -> str | None:
    video_id = extract_video_id(url)
    if video_id is None:
        return None
    return CANONICAL_WATCH_URL.format(video_id)
