"""
Evolution Resolver.

Picks the latest evolution (image) of a pollen from a `file/ls` listing of
its output folder. Evolutions are named `<prefix>_<frame>.jpg` with a zero
padded, strictly increasing frame number, e.g. `progress_00005.jpg`.
"""
import re
from typing import Any, Dict, Iterable, Optional

from pollen_wall.models.pollen import PolledEvolution


def evolution_pattern(extension: str = ".jpg") -> re.Pattern:
    """Regex matching evolution file names, capturing the frame number."""
    return re.compile(r"^[^/]*?_(\d+)" + re.escape(extension) + r"$")


def frame_number(name: str, pattern: re.Pattern) -> Optional[int]:
    """Frame number embedded in `name`, None if it is not an evolution file."""
    match = pattern.match(name)
    if match is None:
        return None
    return int(match.group(1))


def links_of_listing(listing: Dict[str, Any]) -> Iterable[dict]:
    """
    Entries of the (single) folder described by a `file/ls` response.

    Raises:
        ValueError: The listing does not have the `file/ls` shape
    """
    objects = listing.get('Objects') or {}
    if not isinstance(objects, dict):
        raise ValueError(f"Malformed listing: 'Objects' is a {type(objects).__name__}")
    for obj in objects.values():
        links = obj.get('Links') if isinstance(obj, dict) else None
        if not isinstance(links or [], list):
            raise ValueError(f"Malformed listing: 'Links' is a {type(links).__name__}")
        for link in links or []:
            if not isinstance(link, dict):
                raise ValueError(f"Malformed listing entry: {link!r}")
            yield link


def latest_evolution(
    listing: Dict[str, Any],
    extension: str = ".jpg"
) -> Optional[PolledEvolution]:
    """
    Select the evolution with the highest frame number.

    Args:
        listing: Parsed `file/ls` response of the output folder
        extension: Extension evolution files carry

    Returns:
        The latest evolution, or None when no entry matches the naming
        pattern (the pollen has not produced an image yet, or its model
        writes something else)

    Raises:
        ValueError: The listing is malformed
        KeyError: The selected entry has no `Hash`
    """
    pattern = evolution_pattern(extension)
    best: Optional[dict] = None
    best_frame = -1
    for link in links_of_listing(listing):
        frame = frame_number(link.get('Name', ""), pattern)
        if frame is not None and frame > best_frame:
            best, best_frame = link, frame
    if best is None:
        return None
    return PolledEvolution.from_link(best)
