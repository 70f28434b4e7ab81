"""
URL canonicalization for duplicate detection.

normalize_url() is a pure function: the same input always yields the same output,
and feeding its output back in returns it unchanged.
"""
import re
from urllib.parse import parse_qsl, quote, unquote_to_bytes, urlencode, urlsplit, urlunsplit

from models.bookmark import BookmarkType
from services.exceptions import InvalidUrlError

ALLOWED_SCHEMES = frozenset({"http", "https"})
DEFAULT_PORTS = {"http": 80, "https": 443}

# Query keys removed during normalization (compared lowercase)
TRACKING_PARAMS = frozenset({
    # UTM
    "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
    "utm_id", "utm_source_platform", "utm_creative_format", "utm_marketing_tactic",
    # Facebook
    "fbclid", "fb_action_ids", "fb_action_types", "fb_source", "fb_ref",
    # Google / Microsoft / Twitter ads
    "gclid", "gclsrc", "dclid", "msclkid", "twclid",
    # Mailchimp
    "mc_cid", "mc_eid",
    # HubSpot ads
    "hsa_acc", "hsa_cam", "hsa_grp", "hsa_ad", "hsa_src", "hsa_tgt",
    "hsa_kw", "hsa_mt", "hsa_net", "hsa_ver",
    # Generic referrers and analytics
    "ref", "ref_src", "ref_url", "_ga", "_gl", "yclid", "wickedid", "igshid",
    "s_kwcid", "si", "spm", "pvid", "scm", "algo_pvid", "algo_expid",
    "_hsenc", "_hsmi", "mkt_tok",
})
TRACKING_PREFIXES = ("utm_", "fb_", "hsa_")

# Characters left unescaped inside a path segment (RFC 3986 pchar minus unreserved)
_PATH_SAFE = "!$&'()*+,;=:@~"

_VIDEO_HOSTS = ("youtube.com", "youtu.be", "vimeo.com", "dailymotion.com", "twitch.tv")
_IMAGE_HOSTS = ("imgur.com", "flickr.com", "unsplash.com")
_AUDIO_HOSTS = ("soundcloud.com", "spotify.com", "podcasts.apple.com")
_IMAGE_EXT = re.compile(r"\.(jpg|jpeg|png|gif|webp|svg)(\?|$)")
_AUDIO_EXT = re.compile(r"\.(mp3|wav|ogg|flac)(\?|$)")
_DOCUMENT_EXT = re.compile(r"\.(pdf|doc|docx|xls|xlsx|ppt|pptx|epub)(\?|$)")


def is_tracking_param(key: str) -> bool:
    """Whether a query key is a known tracking parameter."""
    lowered = key.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PREFIXES)


def _normalize_path(path: str) -> str:
    path = path.rstrip("/")
    if not path:
        return "/"
    segments = path.split("/")
    return "/".join(quote(unquote_to_bytes(segment), safe=_PATH_SAFE) for segment in segments)


def _normalize_query(query: str) -> str:
    pairs = [
        (key, value)
        for key, value in parse_qsl(query, keep_blank_values=True)
        if not is_tracking_param(key)
    ]
    # sort is stable, so repeated keys keep their relative order
    pairs.sort(key=lambda pair: pair[0])
    return urlencode(pairs)


def normalize_url(url: str) -> str:
    """
    Canonicalize a URL so that equivalent URLs compare equal.

    - scheme and host are lowercased
    - the default port for the scheme is dropped
    - tracking query parameters are removed and the rest sorted by key
    - trailing slashes are removed from the path (the root path stays "/")
    - the fragment is dropped

    Raises:
        InvalidUrlError: If the URL does not parse, is not http/https, or has no host.
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidUrlError(url, "URL is empty")

    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError as e:
        raise InvalidUrlError(url, str(e)) from e

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise InvalidUrlError(url, "URL must use http or https")
    host = parts.hostname
    if not host:
        raise InvalidUrlError(url, "URL has no host")

    netloc = f"[{host}]" if ":" in host else host
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{netloc}:{port}"
    userinfo, sep, _ = parts.netloc.rpartition("@")
    if sep:
        netloc = f"{userinfo}@{netloc}"

    return urlunsplit((
        scheme,
        netloc,
        _normalize_path(parts.path),
        _normalize_query(parts.query),
        "",
    ))


def extract_domain(url: str) -> str:
    """
    Return the lowercase host of a URL without a leading "www.".

    Raises:
        InvalidUrlError: If the URL has no host.
    """
    try:
        host = urlsplit(url.strip()).hostname
    except ValueError as e:
        raise InvalidUrlError(url, str(e)) from e
    if not host:
        raise InvalidUrlError(url, "URL has no host")
    return host.removeprefix("www.")


def detect_bookmark_type(url: str) -> BookmarkType:
    """Guess the content type of a URL from its host and file extension."""
    lowered = url.lower()
    if any(host in lowered for host in _VIDEO_HOSTS):
        return BookmarkType.VIDEO
    if any(host in lowered for host in _IMAGE_HOSTS) or _IMAGE_EXT.search(lowered):
        return BookmarkType.IMAGE
    if any(host in lowered for host in _AUDIO_HOSTS) or _AUDIO_EXT.search(lowered):
        return BookmarkType.AUDIO
    if _DOCUMENT_EXT.search(lowered):
        return BookmarkType.DOCUMENT
    return BookmarkType.ARTICLE


def derive_title_from_url(url: str) -> str:
    """
    Build a readable fallback title from the last path segment, else the domain.

    "https://example.com/blog/my-first_post" -> "My first post"
    """
    parts = urlsplit(url)
    segments = [segment for segment in parts.path.split("/") if segment]
    if segments:
        words = unquote_to_bytes(segments[-1]).decode("utf-8", errors="replace")
        words = words.replace("-", " ").replace("_", " ").strip()
        if words:
            return words[0].upper() + words[1:]
    return extract_domain(url)
