from typing import Iterable, List

from ..models import MediaFile
from .bucketing import bucket_candidates

def refine_bucket(bucket: Iterable[MediaFile], tol_seconds: float, min_items: int) -> List[List[MediaFile]]:
    """
    Splits a bucket into duration-tolerance clusters.

    The shortest unclustered file is the seed; every remaining file within
    tol_seconds of the seed joins it. Distance is measured against the seed
    only, so a loose tolerance can chain durations further apart than
    tol_seconds from each other. Undersized clusters are discarded and their
    files are not retried.
    """
    remaining = sorted(bucket, key=lambda f: f.duration_sec)
    clusters: List[List[MediaFile]] = []

    while len(remaining) >= min_items:
        seed_dur = remaining[0].duration_sec
        cluster = [f for f in remaining if abs(f.duration_sec - seed_dur) <= tol_seconds]
        remaining = [f for f in remaining if abs(f.duration_sec - seed_dur) > tol_seconds]

        if len(cluster) >= min_items:
            clusters.append(cluster)

    return clusters

def build_clusters(files: Iterable[MediaFile], tol_seconds: float, min_items: int) -> List[List[MediaFile]]:
    """Buckets the catalog and refines each bucket, preserving bucket order."""
    clusters: List[List[MediaFile]] = []
    for bucket in bucket_candidates(files, min_items):
        clusters.extend(refine_bucket(bucket, tol_seconds, min_items))
    return clusters
