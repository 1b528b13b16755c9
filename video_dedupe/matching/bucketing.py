from collections import defaultdict
from typing import Dict, Iterable, List, Tuple

from ..models import MediaFile

BucketKey = Tuple[int, int, float]

def bucket_key(f: MediaFile) -> BucketKey:
    return (f.width, f.height, round(f.duration_sec, 1))

def bucket_candidates(files: Iterable[MediaFile], min_items: int) -> List[List[MediaFile]]:
    """
    Groups files by (width, height, duration rounded to 0.1s).

    Files with missing attributes are never bucketed. Buckets smaller than
    min_items are dropped; the rest come back largest first.
    """
    buckets: Dict[BucketKey, List[MediaFile]] = defaultdict(list)
    for f in files:
        if not f.is_complete:
            continue
        buckets[bucket_key(f)].append(f)

    kept = [(key, items) for key, items in buckets.items() if len(items) >= min_items]
    kept.sort(key=lambda kv: (-len(kv[1]), kv[0]))
    return [items for _, items in kept]
