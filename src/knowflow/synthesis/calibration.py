"""Calibration of raw cluster measurements to 0-1 confidence components."""


def calibrate_support_score(fragment_count: int) -> float:
    """Map supporting fragment count to 0-1, saturating.

    Args:
        fragment_count: Fragments in the cluster.

    Returns:
        ``1 - 0.5**n``: 0.5 for one fragment, 0.75 for two, approaching 1.
    """
    if fragment_count <= 0:
        return 0.0
    return 1.0 - 0.5 ** fragment_count


def calibrate_overlap_score(tags: list[str], vocabulary: list[str]) -> float:
    """Share of the cluster tags already known to the direction.

    Args:
        tags: Cluster tags.
        vocabulary: Direction tag vocabulary.

    Returns:
        ``|tags ∩ vocabulary| / |tags|``, 0 when either side is empty.
    """
    tag_set = {t.lower() for t in tags}
    vocab = {v.lower() for v in vocabulary}
    if not tag_set or not vocab:
        return 0.0
    return len(tag_set & vocab) / len(tag_set)


def calibrate_length_score(body_length: int, target_min: int, target_max: int) -> float:
    """Score body length against the target band.

    Args:
        body_length: Characters in the synthesized body.
        target_min: Lower edge of the band.
        target_max: Upper edge of the band.

    Returns:
        1.0 inside the band, falling linearly outside it (never below 0).
    """
    if body_length <= 0:
        return 0.0
    if body_length < target_min:
        return body_length / target_min
    if body_length <= target_max:
        return 1.0
    # Too long: lose confidence linearly, reaching 0 at twice the upper edge
    return max(0.0, 1.0 - (body_length - target_max) / target_max)
