"""Rule-table driven filtering of product detail images.

Product pages mix real gallery images with logos, UI sprites, tracking pixels and
tiny thumbnails. Every rule used to tell them apart lives in an ImageRuleTable so
the table can be inspected, configured and tested without touching the network.
"""

import re
from dataclasses import dataclass, replace
from fnmatch import fnmatch
from typing import Iterable, List, Optional, Pattern, Tuple
from urllib.parse import parse_qsl, urlsplit


@dataclass(frozen=True)
class DimensionRule:
    """Resolution hint embedded in an image URL.

    Every captured group is read as a pixel size; the URL is rejected when the
    smallest captured size is below ``minimum``.
    """

    name: str
    pattern: Pattern[str]
    minimum: int

    def sizes(self, url: str) -> List[Tuple[int, ...]]:
        return [
            tuple(int(group) for group in match.groups() if group)
            for match in self.pattern.finditer(url)
        ]

    def violated_by(self, url: str) -> bool:
        return any(sizes and min(sizes) < self.minimum for sizes in self.sizes(url))


@dataclass(frozen=True)
class ImageRuleTable:
    allowed_schemes: Tuple[str, ...] = ("http", "https")
    blocked_hosts: Tuple[str, ...] = ()
    blocked_path_tokens: frozenset = frozenset()
    blocked_path_substrings: Tuple[str, ...] = ()
    dimension_rules: Tuple[DimensionRule, ...] = ()
    dimension_query_keys: frozenset = frozenset()
    min_query_dimension: int = 0

    @classmethod
    def build(
        cls,
        min_dimension: int,
        min_amazon_dimension: int,
        extra_hosts: Iterable[str] = (),
        extra_tokens: Iterable[str] = (),
    ) -> "ImageRuleTable":
        """Default table with the given thresholds and any extra blocklist entries."""
        return replace(
            DEFAULT_RULES,
            blocked_hosts=DEFAULT_RULES.blocked_hosts + tuple(h.lower() for h in extra_hosts),
            blocked_path_tokens=DEFAULT_RULES.blocked_path_tokens | {t.lower() for t in extra_tokens},
            dimension_rules=_dimension_rules(min_dimension, min_amazon_dimension),
            min_query_dimension=min_dimension,
        )

    @classmethod
    def from_settings(cls, settings) -> "ImageRuleTable":
        return cls.build(
            min_dimension=settings.IMAGE_MIN_DIMENSION,
            min_amazon_dimension=settings.IMAGE_MIN_AMAZON_DIMENSION,
            extra_hosts=settings.get_blocked_image_hosts(),
            extra_tokens=settings.get_blocked_image_tokens(),
        )


def _dimension_rules(min_dimension: int, min_amazon_dimension: int) -> Tuple[DimensionRule, ...]:
    return (
        # alicdn: .../tps-64-64.png
        DimensionRule("alicdn_tps", re.compile(r"tps-(\d+)-(\d+)", re.I), min_dimension),
        # generic WxH: _220x220.jpg, /100x100/
        DimensionRule("width_x_height", re.compile(r"(?<![a-z0-9])(\d{1,4})x(\d{1,4})(?!\d)", re.I), min_dimension),
        # eBay: /s-l64.jpg
        DimensionRule("ebay_side", re.compile(r"/s-l(\d+)\.", re.I), min_dimension),
        # Amazon size codes: ._AC_SL1500_. ._AC_US40_. ._SX38_SY50_.
        DimensionRule("amazon_size_code", re.compile(r"\._[A-Z0-9_,]*?[SU][LXYS](\d+)_"), min_amazon_dimension),
    )


DEFAULT_RULES = ImageRuleTable(
    blocked_hosts=(
        "*doubleclick.net",
        "*google-analytics.com",
        "*googletagmanager.com",
        "*googlesyndication.com",
        "*facebook.com",
        "*facebook.net",
        "*scorecardresearch.com",
        "*amazon-adsystem.com",
        "fls-*.amazon.com",
        "*criteo.com",
        "*criteo.net",
        "*gravatar.com",
        "pixel.*",
    ),
    blocked_path_tokens=frozenset({
        "icon", "icons", "logo", "logos", "badge", "badges", "button", "buttons",
        "play", "info", "arrow", "arrows", "star", "stars", "rating", "prime",
        "sponsor", "sponsored", "ad", "ads", "advert", "banner", "banners",
        "thumbnail", "thumb", "thumbs", "small", "tiny", "mini",
        "avatar", "avatars", "profile", "user", "account",
        "checkmark", "check", "close", "cancel",
        "loading", "spinner", "loader", "skeleton", "placeholder", "empty", "default",
        "pixel", "tracking", "beacon", "analytics", "sprite", "sprites", "spacer",
        "transparent", "blank",
    }),
    # Matched case-sensitively: Amazon UI sprites live under /images/G/, eBay photos under /images/g/
    blocked_path_substrings=("no-image", "no_image", "noimage", "noImage", "NoImage", "x-mark", "/images/G/"),
    dimension_rules=_dimension_rules(200, 500),
    dimension_query_keys=frozenset({"w", "h", "width", "height", "imwidth", "imheight", "size"}),
    min_query_dimension=200,
)

_PATH_SEPARATOR = re.compile(r"[^a-z0-9]+")
_INTEGER = re.compile(r"\d+")
_SIZE_CODE = re.compile(r"\._[A-Z0-9_,]+_\.")
_EBAY_SIDE = re.compile(r"/s-l\d+\.")


def rejection_reason(url: str, rules: ImageRuleTable = DEFAULT_RULES) -> Optional[str]:
    """Name of the first rule that rejects ``url``, or None if it is a valid detail image."""
    if not url or not isinstance(url, str):
        return "empty"

    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return "unparseable"
    if parts.scheme.lower() not in rules.allowed_schemes or not parts.netloc:
        return "scheme"

    host = (parts.hostname or "").lower()
    for pattern in rules.blocked_hosts:
        if fnmatch(host, pattern):
            return f"host:{pattern}"

    path = parts.path.lower()
    # Whole separator-delimited words only; "logo2" counts as "logo", "silicone" never as "icon"
    for token in _PATH_SEPARATOR.split(path):
        word = token.rstrip("0123456789")
        if word in rules.blocked_path_tokens:
            return f"path_token:{word}"
    for substring in rules.blocked_path_substrings:
        if substring in parts.path:
            return f"path_substring:{substring}"

    for rule in rules.dimension_rules:
        if rule.violated_by(parts.path):
            return f"dimension:{rule.name}"

    for key, value in parse_qsl(parts.query):
        if key.lower() not in rules.dimension_query_keys:
            continue
        sizes = [int(n) for n in _INTEGER.findall(value)]
        if sizes and min(sizes) < rules.min_query_dimension:
            return f"query_dimension:{key}"

    return None


def is_valid_detail_image(url: str, rules: ImageRuleTable = DEFAULT_RULES) -> bool:
    return rejection_reason(url, rules) is None


def filter_detail_images(urls: Iterable[str], rules: ImageRuleTable = DEFAULT_RULES) -> List[str]:
    """Keep valid detail images, preserving their relative order."""
    return [url for url in urls if is_valid_detail_image(url, rules)]


def extract_resolution(url: str, rules: ImageRuleTable = DEFAULT_RULES) -> Optional[Tuple[int, int]]:
    """(width, height) hinted by the URL, or None when it carries no hint.

    Single-sided hints (eBay, Amazon) are returned as a square.
    """
    try:
        path = urlsplit(url).path
    except ValueError:
        return None
    for rule in rules.dimension_rules:
        for sizes in rule.sizes(path):
            if len(sizes) >= 2:
                return sizes[0], sizes[1]
            if len(sizes) == 1:
                return sizes[0], sizes[0]
    return None


def to_high_resolution(url: str) -> str:
    """Strip Amazon size codes and request eBay's largest rendition."""
    url = _SIZE_CODE.sub(".", url)
    return _EBAY_SIDE.sub("/s-l1600.", url)
