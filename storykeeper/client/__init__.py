"""
Client-side memory model: aggregation, rendering, primer and stream consumption.
"""

from storykeeper.client.aggregator import ClientMemoryAggregator, MemoryPanel, RenderBatch
from storykeeper.client.primer import PrimerCaps, build_primer

__all__ = [
    "ClientMemoryAggregator",
    "MemoryPanel",
    "RenderBatch",
    "PrimerCaps",
    "build_primer",
]
