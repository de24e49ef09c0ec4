"""DRAM geometry, timing parameters, request packets and per-channel queues."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterator, Optional

UINT64_MAX = (1 << 64) - 1


def _log2_exact(value: int, name: str) -> int:
    if value < 1 or value & (value - 1):
        raise ValueError(f"{name} must be a positive power of two, got {value}")
    return value.bit_length() - 1


class AccessType(IntEnum):
    """Kinds of memory request tracked by the caches and the controller."""

    LOAD = 0
    RFO = 1
    PREFETCH = 2
    WRITEBACK = 3
    LOAD_TRANSLATION = 4
    PREFETCH_TRANSLATION = 5
    TRANSLATION_FROM_L1D = 6


NUM_TYPES = len(AccessType)


@dataclass
class DramConfig:
    """Organisation and timing of the off-chip DRAM, in CPU cycles."""

    channels: int = 1
    ranks: int = 1
    banks: int = 8
    rows: int = 65536
    columns: int = 128
    channel_width: int = 8
    block_size: int = 64
    rq_size: int = 64
    wq_size: int = 64
    mtps: int = 3200
    trp: int = 50
    trcd: int = 50
    tcas: int = 50
    dbus_return_time: int = 10
    dbus_turn_around_time: int = 30
    write_high_wm: Optional[int] = None
    write_low_wm: Optional[int] = None

    def __post_init__(self) -> None:
        self.log2_channels = _log2_exact(self.channels, "channels")
        self.log2_ranks = _log2_exact(self.ranks, "ranks")
        self.log2_banks = _log2_exact(self.banks, "banks")
        self.log2_rows = _log2_exact(self.rows, "rows")
        self.log2_columns = _log2_exact(self.columns, "columns")
        if self.rq_size < 1 or self.wq_size < 1:
            raise ValueError("queue sizes must be positive")
        if self.channel_width < 1 or self.block_size < 1:
            raise ValueError("block size and channel width must be positive")
        if self.write_high_wm is None:
            self.write_high_wm = (self.wq_size * 7) // 8
        if self.write_low_wm is None:
            self.write_low_wm = (self.wq_size * 3) // 4

    @classmethod
    def from_timings(
        cls,
        cpu_freq,
        io_freq,
        trp_ns,
        trcd_ns,
        tcas_ns,
        low_bandwidth=False,
        **kwargs,
    ) -> "DramConfig":
        """Build a configuration from frequencies (MHz) and latencies (ns)."""
        mtps = io_freq // 8 if low_bandwidth else io_freq
        if mtps <= 0:
            raise ValueError("DRAM transfer rate must be positive")
        block_size = kwargs.get("block_size", 64)
        channel_width = kwargs.get("channel_width", 8)
        return cls(
            mtps=mtps,
            trp=int((1.0 * trp_ns * cpu_freq) / 1000),
            trcd=int((1.0 * trcd_ns * cpu_freq) / 1000),
            tcas=int((1.0 * tcas_ns * cpu_freq) / 1000),
            dbus_return_time=(block_size // channel_width) * (cpu_freq // mtps),
            **kwargs,
        )

    @property
    def size_mb(self) -> int:
        total = (
            self.rows * self.columns * self.banks * self.ranks * self.channels * self.block_size
        )
        return total // (1024 * 1024)

    def _field(self, address: int, log2_width: int, shift: int) -> int:
        if log2_width == 0:
            return 0
        return (address >> shift) & ((1 << log2_width) - 1)

    def channel_of(self, address) -> int:
        return self._field(address, self.log2_channels, 0)

    def bank_of(self, address) -> int:
        return self._field(address, self.log2_banks, self.log2_channels)

    def column_of(self, address) -> int:
        return self._field(address, self.log2_columns, self.log2_banks + self.log2_channels)

    def rank_of(self, address) -> int:
        shift = self.log2_columns + self.log2_banks + self.log2_channels
        return self._field(address, self.log2_ranks, shift)

    def row_of(self, address) -> int:
        shift = self.log2_ranks + self.log2_columns + self.log2_banks + self.log2_channels
        return self._field(address, self.log2_rows, shift)

    def summary(self) -> str:
        return (
            f"Off-chip DRAM Size: {self.size_mb} MB Channels: {self.channels} "
            f"Width: {8 * self.channel_width}-bit Data Rate: {self.mtps} MT/s"
        )


@dataclass
class Packet:
    """A memory request travelling through the hierarchy."""

    address: int
    full_addr: int = 0
    cpu: int = 0
    instr_id: int = 0
    type: AccessType = AccessType.LOAD
    instruction: bool = False
    data: int = 0
    event_cycle: int = 0
    fill_level: int = 0
    scheduled: bool = False


class QueueFullError(Exception):
    """Raised when a packet is inserted into a queue with no free slot."""


@dataclass
class PacketQueue:
    """Fixed-size slot array of pending DRAM requests for one channel."""

    name: str
    size: int
    is_wq: bool = False
    entries: list = field(init=False)
    next_schedule_index: int = field(init=False)
    next_schedule_cycle: int = field(init=False, default=UINT64_MAX)
    next_process_index: int = field(init=False)
    next_process_cycle: int = field(init=False, default=UINT64_MAX)
    row_buffer_hit: int = field(init=False, default=0)
    row_buffer_miss: int = field(init=False, default=0)
    full: int = field(init=False, default=0)
    forward: int = field(init=False, default=0)
    access: int = field(init=False, default=0)
    merged: int = field(init=False, default=0)
    to_cache: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        if self.size < 1:
            raise ValueError("queue size must be positive")
        self.entries = [None] * self.size
        self.next_schedule_index = self.size
        self.next_process_index = self.size

    @property
    def occupancy(self) -> int:
        return sum(entry is not None for entry in self.entries)

    def __len__(self) -> int:
        return self.occupancy

    def __getitem__(self, index: int) -> Optional[Packet]:
        return self.entries[index]

    def occupied(self) -> Iterator[tuple]:
        """Yield (slot, packet) for every filled slot in slot order."""
        for index, entry in enumerate(self.entries):
            if entry is not None:
                yield index, entry

    def is_full(self) -> bool:
        return self.occupancy >= self.size

    def insert(self, packet) -> int:
        """Copy the packet into the first free slot and return that slot."""
        if packet.address == 0:
            raise ValueError("address 0 marks an empty slot and cannot be queued")
        for index, entry in enumerate(self.entries):
            if entry is None:
                self.entries[index] = dataclasses.replace(packet)
                return index
        raise QueueFullError(f"{self.name} is full")

    def find_address(self, address) -> Optional[int]:
        """Return the slot holding a request for this address, if any."""
        for index, entry in self.occupied():
            if entry.address == address:
                return index
        return None

    def remove(self, index) -> Packet:
        """Empty a slot and return the packet it held."""
        entry = self.entries[index]
        if entry is None:
            raise IndexError(f"slot {index} of {self.name} is empty")
        self.entries[index] = None
        return entry