"""Histogram buckets tuned around a scrape duration."""

from __future__ import annotations

import bisect
from datetime import timedelta
from typing import Union

from metricsserver.instruments import DEF_BUCKETS


def buckets_for_scrape_duration(scrape_timeout: Union[timedelta, float]) -> list[float]:
    """Default buckets extended with entries around the scrape timeout.

    ``scrape_timeout`` is a timedelta or a number of seconds.
    """
    if isinstance(scrape_timeout, timedelta):
        timeout = scrape_timeout.total_seconds()
    else:
        timeout = float(scrape_timeout)

    buckets = list(DEF_BUCKETS)
    max_bucket = buckets[-1]
    smallest = buckets[0]

    if timeout > max_bucket:
        halfway = max_bucket + (timeout - max_bucket) / 2
        buckets.extend([halfway, timeout, timeout * 1.5, timeout * 2.0])
    elif timeout < max_bucket:
        position = bisect.bisect_right(buckets, timeout)
        above = buckets[position]
        if above - timeout < smallest or (
            position > 0 and timeout - buckets[position - 1] < smallest
        ):
            return buckets
        buckets.insert(position, timeout)

    return buckets