"""
Two-pass duplicate grouping.

Pass 1 clusters responsive/resized variants by canonical filename without
decoding pixels. Pass 2 clusters the pass-1 survivors by average-hash Hamming
distance, greedily against each group's representative, in input order.
"""

import posixpath
import re
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Optional, Sequence

import imagehash

from autoalt.config import DEFAULT_DEDUP_THRESHOLD
from autoalt.fingerprint import compute_fingerprint, hamming_distance
from autoalt.models import DuplicateGroup, ImageAsset

SIZE_TOKENS = {"s", "m", "l", "xl", "xxl", "small", "medium", "large", "xlarge"}
EDIT_TOKENS = {"copy", "final"}
_DIMENSION_TOKEN = re.compile(r"^\d+x\d+$")
_WIDTH_TOKEN = re.compile(r"^\d+w$")
_VERSION_TOKEN = re.compile(r"^v\d+$")
_DENSITY_SUFFIX = re.compile(r"@\d+(?:\.\d+)?x")
_SEPARATORS = re.compile(r"[-_.\s]+")


class RepresentativePolicy(str, Enum):
    SMALLEST_BYTES = "smallest"
    LARGEST_AREA = "largest"


# ---------------------------------------------------------------------------
# Pass 1: filename canonicalization
# ---------------------------------------------------------------------------


def _is_noise_token(token: str) -> bool:
    return (
        token in SIZE_TOKENS
        or token in EDIT_TOKENS
        or bool(_DIMENSION_TOKEN.match(token))
        or bool(_WIDTH_TOKEN.match(token))
        or bool(_VERSION_TOKEN.match(token))
    )


def canonical_name(entry_path: str) -> str:
    """
    Strip responsive-image and editing tokens from a filename.

    "gallery/Car_Front-800x600@2x.JPG" and "car-front-s.jpg" both become
    "car-front". The folder and the extension are ignored.
    """
    stem = posixpath.splitext(posixpath.basename(entry_path))[0].lower()
    stem = _DENSITY_SUFFIX.sub("", stem)
    tokens = [token for token in _SEPARATORS.split(stem) if token]
    kept = [token for token in tokens if not _is_noise_token(token)]
    if not kept:
        kept = tokens
    return "-".join(kept)


def select_representative(
    assets: Sequence[ImageAsset],
    policy: RepresentativePolicy = RepresentativePolicy.SMALLEST_BYTES,
) -> ImageAsset:
    """Pick one survivor; ties go to the earliest asset."""
    if not assets:
        raise ValueError("Cannot select a representative from an empty group")
    if policy == RepresentativePolicy.LARGEST_AREA:
        return max(assets, key=lambda asset: asset.area)
    return min(assets, key=lambda asset: asset.byte_size)


def group_by_name(assets: Sequence[ImageAsset]) -> list[list[ImageAsset]]:
    """Group assets sharing a canonical name, in first-seen order."""
    groups: dict[str, list[ImageAsset]] = {}
    for asset in assets:
        groups.setdefault(canonical_name(asset.entry_path), []).append(asset)
    return list(groups.values())


# ---------------------------------------------------------------------------
# Pass 2: content-hash clustering
# ---------------------------------------------------------------------------


def compute_fingerprints(
    assets: Sequence[ImageAsset], max_workers: int = 1
) -> list[Optional[imagehash.ImageHash]]:
    """Fingerprint every asset; the result list is in input order."""
    if max_workers <= 1 or len(assets) <= 1:
        return [compute_fingerprint(asset.data) for asset in assets]
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        return list(executor.map(lambda asset: compute_fingerprint(asset.data), assets))


def cluster_by_fingerprint(
    candidates: Sequence[ImageAsset],
    fingerprints: Sequence[Optional[imagehash.ImageHash]],
    threshold: int = DEFAULT_DEDUP_THRESHOLD,
) -> list[list[int]]:
    """
    Greedy single-linkage clustering of candidate indices.

    Each unclustered candidate opens a group and absorbs every later unclustered
    candidate within *threshold* bits of the opener's fingerprint. Candidates
    without a fingerprint are always singletons.
    """
    if len(candidates) != len(fingerprints):
        raise ValueError("candidates and fingerprints must have the same length")

    clustered = [False] * len(candidates)
    clusters: list[list[int]] = []
    for i, anchor in enumerate(fingerprints):
        if clustered[i]:
            continue
        clustered[i] = True
        members = [i]
        if anchor is not None:
            for j in range(i + 1, len(candidates)):
                if clustered[j]:
                    continue
                distance = hamming_distance(anchor, fingerprints[j])
                if distance is not None and distance <= threshold:
                    clustered[j] = True
                    members.append(j)
        clusters.append(members)
    return clusters


# ---------------------------------------------------------------------------
# Both passes
# ---------------------------------------------------------------------------


def deduplicate(
    assets: Sequence[ImageAsset],
    threshold: int = DEFAULT_DEDUP_THRESHOLD,
    policy: RepresentativePolicy = RepresentativePolicy.SMALLEST_BYTES,
    verify_names: bool = False,
    max_workers: int = 1,
) -> list[DuplicateGroup]:
    """
    Group near-identical shots and pick one representative per group.

    With verify_names, a filename group only keeps members whose fingerprint is
    within *threshold* of its survivor; the rest go to pass 2 on their own.
    Every input asset lands in exactly one returned group.
    """
    if not assets:
        return []

    all_fingerprints = compute_fingerprints(assets, max_workers=max_workers)
    fingerprint_of = {id(asset): fp for asset, fp in zip(assets, all_fingerprints)}

    # Pass 1: each candidate carries the assets it already absorbed.
    candidates: list[tuple[ImageAsset, list[ImageAsset]]] = []
    for name_group in group_by_name(assets):
        survivor = select_representative(name_group, policy)
        absorbed = [survivor]
        released: list[ImageAsset] = []
        for asset in name_group:
            if asset is survivor:
                continue
            if verify_names:
                distance = hamming_distance(fingerprint_of[id(survivor)], fingerprint_of[id(asset)])
                if distance is None or distance > threshold:
                    released.append(asset)
                    continue
            absorbed.append(asset)
        candidates.append((survivor, absorbed))
        candidates.extend((asset, [asset]) for asset in released)

    # Keep pass-2 iteration in archive order so ties resolve the same way every run.
    order = {id(asset): index for index, asset in enumerate(assets)}
    candidates.sort(key=lambda item: order[id(item[0])])

    survivors = [survivor for survivor, _ in candidates]
    fingerprints = [fingerprint_of[id(survivor)] for survivor in survivors]

    groups: list[DuplicateGroup] = []
    for cluster in cluster_by_fingerprint(survivors, fingerprints, threshold):
        members = [asset for index in cluster for asset in candidates[index][1]]
        members.sort(key=lambda asset: order[id(asset)])
        representative = select_representative([survivors[index] for index in cluster], policy)
        groups.append(
            DuplicateGroup(
                representative=representative,
                members=members,
                fingerprint=fingerprint_of[id(representative)],
            )
        )
    return groups
