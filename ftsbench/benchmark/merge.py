"""Client-side union for backends that cannot combine sources natively."""

from typing import Iterable, List, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .engines.base import HitRecord


def merge_ranked(result_lists: Iterable[Sequence["HitRecord"]],
                 limit: Optional[int],
                 offset: int = 0) -> List["HitRecord"]:
    """
    Concatenate per-source hits, rank by relevance and cut one page

    The sort is stable, so equal scores keep source order.

    Args:
        result_lists: Hits per source, each already fetched with
            offset + limit rows
        limit: Page size of the combined set; None keeps everything
        offset: Page start in the combined set

    Returns:
        The requested page of the merged list
    """
    merged = [hit for hits in result_lists for hit in hits]
    merged.sort(key=lambda hit: hit.relevance, reverse=True)
    if limit is None:
        return merged[offset:]
    return merged[offset:offset + limit]
