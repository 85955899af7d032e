"""Name cleaning and file/folder naming for the .strm library.

Provider titles carry IPTV decoration ("EN - The Matrix (1999) 4K HEVC").
Cleaning is an ordered list of independent ``str -> str`` rules so each can
be tested and reordered on its own.
"""

import re
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple

Rule = Callable[[str], str]

COUNTRY_PREFIX = re.compile(
    r"^\s*\|?\s*(UK|US|EN|DE|FR|NL|ES|IT|CA|AU|BE|CH|AT|PT|BR|MX|AR|PL|CZ|RO|HU|TR|GR|"
    r"SE|NO|DK|FI|IE|IN|PK|AF|ZA|AE|SA|EG|MA|NG|KE|JP|KR|CN|TW|HK|SG|MY|TH|VN|PH|ID|NZ|"
    r"RU|UA|BY|KZ|IL|IR|IQ|MULTI|VOSTFR)\s*[:|\-]\s*",
    re.IGNORECASE,
)
QUALITY_PIPE = re.compile(
    r"\s*\|\s*(HD|FHD|UHD|4K|SD|720p|1080p|2160p|HEVC|H\.?264|H\.?265)\s*\|?\s*",
    re.IGNORECASE,
)
BRACKETED_TAG = re.compile(
    r"\s*[\[\(](HD|FHD|UHD|4K|SD|HEVC|H\.?264|H\.?265|720p|1080p|2160p)[\]\)]\s*",
    re.IGNORECASE,
)
CODEC = re.compile(
    r"\s*\b(HEVC|H\.?264|H\.?265|AVC|MPEG-?[24]|VP9|AV1|x264|x265)\b\s*",
    re.IGNORECASE,
)
RESOLUTION_SUFFIX = re.compile(r"\s*\b(1080[pi]?|720[pi]?|2160[pi]?|4K)\s*$", re.IGNORECASE)
QUALITY_SUFFIX = re.compile(r"\s+(HD|FHD|UHD|4K|SD)$", re.IGNORECASE)
EDGE_PIPES = re.compile(r"(^\s*\|\s*|\s*\|\s*$)")
MULTIPLE_SPACES = re.compile(r"\s{2,}")

# Tokens that make up a version label, in the form they are reported.
VERSION_TOKEN = re.compile(
    r"(?<![\w.])(UHD|FHD|4K|2160p|1080p|720p|HEVC|H\.?265|H\.?264|x265|x264|AV1)(?![\w.])",
    re.IGNORECASE,
)

YEAR_SUFFIX = re.compile(r"\s*\((\d{4})\)\s*$")
INVALID_FILE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
REPEATED_UNDERSCORES = re.compile(r"_{2,}")
ID_SUFFIX = re.compile(r"\s*\[(tmdb|tvdb|imdb)id-[^\]]+\]\s*$", re.IGNORECASE)
GENERIC_EPISODE_TITLE = re.compile(r"^episode\s*\d+$", re.IGNORECASE)

UNKNOWN = "Unknown"


def strip_country_prefix(name: str) -> str:
    return COUNTRY_PREFIX.sub("", name)


def strip_pipe_quality(name: str) -> str:
    return QUALITY_PIPE.sub(" ", name)


def strip_bracketed_tags(name: str) -> str:
    return BRACKETED_TAG.sub(" ", name)


def strip_codecs(name: str) -> str:
    return CODEC.sub(" ", name)


def strip_resolution_suffix(name: str) -> str:
    return RESOLUTION_SUFFIX.sub("", name)


def strip_quality_suffix(name: str) -> str:
    return QUALITY_SUFFIX.sub("", name)


def strip_edge_pipes(name: str) -> str:
    return EDGE_PIPES.sub("", name)


def collapse_whitespace(name: str) -> str:
    return MULTIPLE_SPACES.sub(" ", name).strip()


NAME_RULES: List[Rule] = [
    strip_country_prefix,
    strip_pipe_quality,
    strip_bracketed_tags,
    strip_codecs,
    strip_resolution_suffix,
    strip_quality_suffix,
    strip_edge_pipes,
    collapse_whitespace,
]


def remove_terms_rule(terms: Iterable[str]) -> Rule:
    """Build a rule removing user-configured terms (case-insensitive)."""
    patterns = [re.compile(re.escape(t.strip()), re.IGNORECASE) for t in terms if t and t.strip()]

    def remove_terms(name: str) -> str:
        for pattern in patterns:
            name = pattern.sub("", name)
        return name

    return remove_terms


def build_rules(remove_terms: Optional[Iterable[str]] = None) -> List[Rule]:
    """User terms first, then the built-in rules."""
    if not remove_terms:
        return list(NAME_RULES)
    return [remove_terms_rule(remove_terms)] + NAME_RULES


def clean_name(name: Optional[str], rules: Optional[List[Rule]] = None) -> Optional[str]:
    """Apply cleaning rules in order.

    Args:
        name: Raw provider title
        rules: Rules to apply (defaults to NAME_RULES)

    Returns:
        Cleaned title, or the trimmed original if cleaning removed everything
    """
    if name is None or not name.strip():
        return name

    result = name
    for rule in rules if rules is not None else NAME_RULES:
        result = rule(result)

    result = result.strip()
    return result if result else name.strip()


def split_version_label(name: str, rules: Optional[List[Rule]] = None) -> Tuple[str, Optional[str]]:
    """Split a raw title into a clean name and a version label.

    "The Matrix (1999) 4K HEVC" -> ("The Matrix (1999)", "4K HEVC")

    Args:
        name: Raw provider title
        rules: Cleaning rules

    Returns:
        Tuple of (clean name, label or None)
    """
    tokens = []
    for match in VERSION_TOKEN.finditer(name or ""):
        token = match.group(1).upper()
        if token.endswith("P"):
            token = token[:-1] + "p"
        if token not in tokens:
            tokens.append(token)

    cleaned = clean_name(name, rules)
    label = " ".join(tokens) if tokens else None
    return cleaned or "", label


def sanitize_file_name(name: Optional[str]) -> str:
    """Make a title safe as a file or folder name.

    Removes a trailing "(YYYY)", replaces characters invalid on common
    filesystems with "_" and collapses runs of "_".
    """
    if not name:
        return UNKNOWN

    result = YEAR_SUFFIX.sub("", name)
    result = INVALID_FILE_CHARS.sub("_", result)
    result = REPEATED_UNDERSCORES.sub("_", result)
    result = result.strip(" _")
    return result or UNKNOWN


def extract_year(name: Optional[str], now: Optional[datetime] = None) -> Optional[int]:
    """Year from a trailing "(YYYY)", if plausible."""
    if not name:
        return None

    match = YEAR_SUFFIX.search(name)
    if not match:
        return None

    year = int(match.group(1))
    current_year = (now or datetime.now()).year
    if 1900 <= year <= current_year + 5:
        return year
    return None


def build_folder_name(
    name: str, year: Optional[int], id_kind: Optional[str] = None, id_value: Optional[int] = None
) -> str:
    """Folder name in media server form: "Name (Year) [tmdbid-123]"."""
    base = f"{name} ({year})" if year else name
    if id_kind and id_value:
        return f"{base} [{id_kind}id-{id_value}]"
    return base


def strip_id_suffix(folder_name: str) -> str:
    return ID_SUFFIX.sub("", folder_name)


def folder_key(folder_name: str) -> str:
    """Lookup key for an existing folder: ID suffix removed, case-folded."""
    return strip_id_suffix(folder_name).strip().lower()


def build_movie_file_name(folder_base: str, version_label: Optional[str] = None) -> str:
    if version_label:
        return f"{folder_base} - {sanitize_file_name(version_label)}.strm"
    return f"{folder_base}.strm"


def build_episode_file_name(
    series_name: str, season: int, episode: int, title: Optional[str] = None
) -> str:
    """Episode pointer file name.

    "Show - S01E02 - Title.strm"; generic "Episode N" titles are dropped and
    a blank title becomes "Unknown".
    """
    prefix = f"{series_name} - S{season:02d}E{episode:02d}"
    if title and GENERIC_EPISODE_TITLE.match(title.strip()):
        return f"{prefix}.strm"
    episode_title = sanitize_file_name(title.strip() if title else None)
    return f"{prefix} - {episode_title}.strm"


def season_folder_name(season: int) -> str:
    return f"Season {season}"


def movie_stream_url(base_url: str, username: str, password: str, stream_id: int, extension: Optional[str]) -> str:
    return f"{base_url.rstrip('/')}/movie/{username}/{password}/{stream_id}.{extension or 'mp4'}"


def episode_stream_url(base_url: str, username: str, password: str, episode_id: int, extension: Optional[str]) -> str:
    return f"{base_url.rstrip('/')}/series/{username}/{password}/{episode_id}.{extension or 'mkv'}"
