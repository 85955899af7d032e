"""Sidecar .nfo documents written next to pointer files."""

import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional


def _to_xml(root: ET.Element) -> str:
    ET.indent(root, space="  ")
    body = ET.tostring(root, encoding="unicode")
    return '<?xml version="1.0" encoding="utf-8" standalone="yes"?>\n' + body + "\n"


def build_movie_nfo(title: str, year: Optional[int] = None, tmdb_id: Optional[int] = None) -> str:
    """Build a <movie> document.

    Args:
        title: Clean movie title
        year: Release year
        tmdb_id: TMDB ID, written as the default uniqueid

    Returns:
        XML text
    """
    root = ET.Element("movie")
    ET.SubElement(root, "title").text = title
    if year:
        ET.SubElement(root, "year").text = str(year)
    if tmdb_id:
        unique = ET.SubElement(root, "uniqueid", type="tmdb", default="true")
        unique.text = str(tmdb_id)
        ET.SubElement(root, "tmdbid").text = str(tmdb_id)
    return _to_xml(root)


def build_episode_nfo(
    show_title: str, title: Optional[str], season: int, episode: int
) -> str:
    """Build an <episodedetails> document."""
    root = ET.Element("episodedetails")
    ET.SubElement(root, "title").text = title or f"Episode {episode}"
    ET.SubElement(root, "showtitle").text = show_title
    ET.SubElement(root, "season").text = str(season)
    ET.SubElement(root, "episode").text = str(episode)
    return _to_xml(root)


def nfo_path_for(strm_path: Path) -> Path:
    return strm_path.with_suffix(".nfo")
