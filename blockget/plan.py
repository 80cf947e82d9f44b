# blockget/plan.py
"""
Block layout: how many workers a round gets and how the remaining span is cut.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence

from blockget.models import Block, BlockPlan, DEFAULT_TIERS, PlanTier
from blockget.utils import block_file_path


def plan_blocks(remaining: int, tiers: Sequence[PlanTier] = DEFAULT_TIERS) -> BlockPlan:
    """Pick worker count and block size for ``remaining`` bytes from the tier table."""
    if remaining < 0:
        raise ValueError(f"remaining must be >= 0, got {remaining}")

    for tier in tiers:
        if tier.max_remaining is None or remaining <= tier.max_remaining:
            if tier.fixed_block_size is not None:
                block_size = tier.fixed_block_size
            else:
                block_size = remaining // tier.divisor
            return BlockPlan(worker_count=tier.worker_count, block_size=max(block_size, 1))

    raise ValueError(f"No planning tier covers {remaining} bytes")


def split_round(begin: int, total_size: int, plan: BlockPlan,
                output_path: Path, marker: str = "blockget",
                existing: Optional[Dict[int, int]] = None) -> List[Block]:
    """Cut one round of at most ``plan.worker_count`` contiguous blocks from ``begin``.

    ``existing`` maps the start of block files already on disk to their end;
    a round that reaches such a start reuses that range so the file is resumed
    rather than fetched again under a new name.
    """
    existing = existing or {}
    later_starts = sorted(s for s in existing if s > begin)
    blocks: List[Block] = []
    while begin < total_size and len(blocks) < plan.worker_count:
        if begin in existing:
            end = existing[begin]
        else:
            next_start = next((s for s in later_starts if s > begin), total_size)
            end = min(begin + plan.block_size, next_start)
            # Fold a tail shorter than one block into this block
            if next_start == total_size and total_size - end < plan.block_size:
                end = total_size
        blocks.append(Block(start=begin, end=end,
                            file_path=block_file_path(output_path, marker, begin, end)))
        begin = end
    return blocks
