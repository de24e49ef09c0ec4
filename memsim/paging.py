"""Virtual-to-physical page allocation with contiguous runs and NRU swapping."""

from __future__ import annotations

import logging
import random
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

_WORD_BITS = 64
_WORD_MASK = (1 << _WORD_BITS) - 1

logger = logging.getLogger(__name__)

InvalidateHook = Callable[[int, int, list], None]


def lg2(n) -> int:
    """Floor of log2 of |n|; -1 for zero."""
    return abs(int(n)).bit_length() - 1


def _check_rotation(c: int) -> int:
    if not 0 <= c < _WORD_BITS:
        raise ValueError(f"rotate by type width or more: {c}")
    return c


def rotl64(n, c) -> int:
    """Rotate a 64-bit value left by c bits."""
    c = _check_rotation(c)
    n &= _WORD_MASK
    return ((n << c) | (n >> ((-c) & (_WORD_BITS - 1)))) & _WORD_MASK


def rotr64(n, c) -> int:
    """Rotate a 64-bit value right by c bits."""
    c = _check_rotation(c)
    n &= _WORD_MASK
    return ((n >> c) | (n << ((-c) & (_WORD_BITS - 1)))) & _WORD_MASK


@dataclass(frozen=True)
class FaultCounts:
    """Page faults of one CPU: minor ones allocate, major ones swap."""

    minor: int
    major: int


class PageAllocator:
    """Maps virtual pages to physical pages, shared across all CPUs."""

    def __init__(
        self,
        num_cpus: int = 1,
        dram_pages: int = 1 << 20,
        log2_page_size: int = 12,
        log2_block_size: int = 6,
        block_size: int = 64,
        seed: int = 0,
        rng: Optional[random.Random] = None,
        invalidate: Optional[InvalidateHook] = None,
    ) -> None:
        if num_cpus < 1:
            raise ValueError("at least one CPU is required")
        if dram_pages < 1:
            raise ValueError("DRAM must hold at least one page")
        self.num_cpus = num_cpus
        self.dram_pages = dram_pages
        self.log2_page_size = log2_page_size
        self.log2_block_size = log2_block_size
        self.block_size = block_size
        self._rng = rng if rng is not None else random.Random(seed)
        self._invalidate = invalidate

        self.page_table: dict = {}
        self.inverse_table: dict = {}
        self.recent_pages: set = set()
        self.page_queue: deque = deque()
        self.unique_cl = [dict() for _ in range(num_cpus)]
        self.num_cl = [0] * num_cpus
        self.num_page = [0] * num_cpus
        self.minor_fault = [0] * num_cpus
        self.major_fault = [0] * num_cpus
        self.allocated_pages = 0
        self.previous_ppage = 0
        self.num_adjacent_page = 0

    def _draw_ppage(self) -> int:
        return self._rng.randrange(self.dram_pages)

    def _swap_in(self, cpu: int, vpage: int) -> None:
        victim = next(
            (candidate for candidate in sorted(self.page_table) if candidate not in self.recent_pages),
            None,
        )
        if victim is None:
            raise RuntimeError("no page available for replacement")
        mapped_ppage = self.page_table.pop(victim)
        self.page_table[vpage] = mapped_ppage
        if mapped_ppage not in self.inverse_table:
            raise RuntimeError(f"physical page {mapped_ppage:#x} missing from inverse table")
        self.inverse_table[mapped_ppage] = vpage
        logger.debug("swap: vpage %#x replaces %#x at ppage %#x", vpage, victim, mapped_ppage)

        if self.page_queue:
            self.page_queue.popleft()
        self.page_queue.append(vpage)

        if self._invalidate is not None:
            lines = [(mapped_ppage << 6) | offset for offset in range(self.block_size)]
            self._invalidate(cpu, victim, lines)

    def _allocate(self, cpu: int, vpage: int) -> None:
        fragmented = False
        if self.num_adjacent_page > 0:
            self.previous_ppage += 1
            ppage = self.previous_ppage
        else:
            ppage = self._draw_ppage()
            fragmented = True

        while ppage in self.inverse_table:
            if self.num_adjacent_page > 0:
                fragmented = True
            ppage = self._draw_ppage()

        self.page_table[vpage] = ppage
        self.inverse_table[ppage] = vpage
        self.page_queue.append(vpage)
        logger.debug("allocate: vpage %#x -> ppage %#x", vpage, ppage)
        self.previous_ppage = ppage
        self.num_adjacent_page = max(self.num_adjacent_page - 1, 0)
        self.num_page[cpu] += 1
        self.allocated_pages += 1

        if fragmented:
            self.num_adjacent_page = 1 << self._rng.randrange(10)

    def translate(self, cpu, instr_id, va, unique_vpage) -> int:
        """Return the physical address for a virtual address, faulting pages in."""
        if va == 0:
            raise ValueError("virtual address 0 cannot be translated")
        if not 0 <= cpu < self.num_cpus:
            raise IndexError(f"cpu {cpu} out of range")

        high_bit_mask = rotr64(cpu, lg2(self.num_cpus))
        unique_va = va | high_bit_mask
        vpage = unique_vpage | high_bit_mask
        voffset = unique_va & ((1 << self.log2_page_size) - 1)

        line = unique_va >> self.log2_block_size
        lines = self.unique_cl[cpu]
        if line in lines:
            lines[line] += 1
        else:
            lines[line] = 0
            self.num_cl[cpu] += 1

        if vpage not in self.page_table:
            if self.allocated_pages >= self.dram_pages:
                self._swap_in(cpu, vpage)
                self.major_fault[cpu] += 1
            else:
                self._allocate(cpu, vpage)
                self.minor_fault[cpu] += 1

        ppage = self.page_table[vpage]
        pa = (ppage << self.log2_page_size) | voffset
        logger.debug("instr %d: vpage %#x -> paddr %#x", instr_id, vpage, pa)
        return pa

    def fault_counts(self, cpu) -> FaultCounts:
        return FaultCounts(minor=self.minor_fault[cpu], major=self.major_fault[cpu])