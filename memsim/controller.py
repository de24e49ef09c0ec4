"""Cycle-level DRAM memory controller with read/write queues and bank state."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from memsim.dram import NUM_TYPES, UINT64_MAX, AccessType, DramConfig, Packet, PacketQueue


@dataclass
class SimulationClock:
    """Per-core cycle counters and warmup progress shared by the simulator."""

    num_cpus: int = 1
    all_warmup_complete: int = 0
    cycles: list = field(init=False)
    warmup_complete: list = field(init=False)

    def __post_init__(self) -> None:
        if self.num_cpus < 1:
            raise ValueError("at least one CPU is required")
        self.cycles = [0] * self.num_cpus
        self.warmup_complete = [False] * self.num_cpus

    def tick(self, cpu) -> int:
        """Advance one core by a cycle and return its new cycle count."""
        self.cycles[cpu] += 1
        return self.cycles[cpu]

    def all_warmed_up(self) -> bool:
        return self.all_warmup_complete >= self.num_cpus


@dataclass
class BankRequest:
    """State of one DRAM bank: the request it serves and its open row."""

    working: bool = False
    working_type: AccessType = AccessType.LOAD
    cycle_available: int = 0
    request_index: Optional[int] = None
    row_buffer_hit: bool = False
    is_write: bool = False
    is_read: bool = False
    open_row: Optional[int] = None

    def release(self) -> None:
        """Mark the bank ready for another request."""
        self.request_index = None
        self.row_buffer_hit = False
        self.working = False
        self.is_write = False
        self.is_read = False


class MemoryController:
    """Schedules reads and writes onto DRAM banks and the shared data bus."""

    def __init__(
        self,
        config: DramConfig,
        clock: SimulationClock,
        upper_level_icache=None,
        upper_level_dcache=None,
        name: str = "DRAM",
    ) -> None:
        self.config = config
        self.clock = clock
        self.name = name
        self.upper_level_icache = upper_level_icache if upper_level_icache is not None else {}
        self.upper_level_dcache = upper_level_dcache if upper_level_dcache is not None else {}

        channels = config.channels
        self.rq = [PacketQueue(f"{name}_RQ{ch}", config.rq_size) for ch in range(channels)]
        self.wq = [
            PacketQueue(f"{name}_WQ{ch}", config.wq_size, is_wq=True) for ch in range(channels)
        ]
        self.bank_requests = [
            [[BankRequest() for _ in range(config.banks)] for _ in range(config.ranks)]
            for _ in range(channels)
        ]
        self.write_mode = [False] * channels
        self.dbus_cycle_available = [0] * channels
        self.dbus_cycle_congested = [0] * channels
        self.dbus_congested = [[0] * (NUM_TYPES + 1) for _ in range(NUM_TYPES + 1)]
        self.scheduled_reads = [0] * channels
        self.scheduled_writes = [0] * channels
        self.access = [0] * NUM_TYPES
        self.hit = [0] * NUM_TYPES
        self.sum_cycles_read = [0] * channels
        self.sum_cycles_write = [0] * channels
        self.banks_busy_read_cycles = [
            [[0] * (config.banks + 1) for _ in range(config.ranks)] for _ in range(channels)
        ]
        self.banks_busy_write_cycles = [
            [[0] * (config.banks + 1) for _ in range(config.ranks)] for _ in range(channels)
        ]

    def _now(self, cpu: int) -> int:
        return self.clock.cycles[cpu]

    def _bank(self, address: int) -> BankRequest:
        cfg = self.config
        return self.bank_requests[cfg.channel_of(address)][cfg.rank_of(address)][
            cfg.bank_of(address)
        ]

    def _return_upward(self, packet: Packet) -> None:
        levels = self.upper_level_icache if packet.instruction else self.upper_level_dcache
        levels[packet.cpu].return_data(packet)

    def reset_remain_requests(self, queue, channel) -> None:
        """Unschedule every scheduled request of a queue when the bus turns around."""
        tcas = self.config.tcas
        for _, entry in queue.occupied():
            if not entry.scheduled:
                continue
            now = self._now(entry.cpu)
            bank = self._bank(entry.address)
            if bank.cycle_available >= tcas and bank.cycle_available - tcas <= now:
                bank.open_row = self.config.row_of(entry.address)
            else:
                bank.open_row = None

            was_write, was_read = bank.is_write, bank.is_read
            bank.release()
            bank.cycle_available = now
            if was_write:
                self.scheduled_writes[channel] -= 1
            elif was_read:
                self.scheduled_reads[channel] -= 1

            entry.scheduled = False
            entry.event_cycle = now

        self.update_schedule_cycle(self.rq[channel])
        self.update_schedule_cycle(self.wq[channel])
        self.update_process_cycle(self.rq[channel])
        self.update_process_cycle(self.wq[channel])

    def _record_busy_banks(self) -> None:
        busy_seen = False
        for channel_banks, writing, reads, writes in zip(
            self.bank_requests,
            self.write_mode,
            self.banks_busy_read_cycles,
            self.banks_busy_write_cycles,
        ):
            if busy_seen:
                break
            for rank_banks, rank_reads, rank_writes in zip(channel_banks, reads, writes):
                if busy_seen:
                    break
                busy = sum(bank.working for bank in rank_banks)
                if busy:
                    busy_seen = True
                (rank_writes if writing else rank_reads)[busy] += 1

    def _due(self, queue: PacketQueue, index: int, cycle: int) -> bool:
        if index >= queue.size:
            return False
        entry = queue[index]
        cpu = entry.cpu if entry is not None else 0
        return cycle <= self._now(cpu)

    def operate(self) -> None:
        """Advance the controller by one cycle on every channel."""
        if self.clock.all_warmed_up():
            self._record_busy_banks()

        turn_around = self.config.dbus_turn_around_time
        for channel, (rq, wq) in enumerate(zip(self.rq, self.wq)):
            if not self.write_mode[channel] and (
                wq.occupancy >= self.config.write_high_wm
                or (rq.occupancy == 0 and wq.occupancy > 0)
            ):
                self.write_mode[channel] = True
                self.reset_remain_requests(rq, channel)
                self.dbus_cycle_available[channel] += turn_around
            elif self.write_mode[channel]:
                if wq.occupancy == 0:
                    self.write_mode[channel] = False
                elif rq.occupancy and wq.occupancy < self.config.write_low_wm:
                    self.write_mode[channel] = False
                if not self.write_mode[channel]:
                    self.reset_remain_requests(wq, channel)
                    self.dbus_cycle_available[channel] += turn_around

            if self.write_mode[channel]:
                if self._due(wq, wq.next_schedule_index, wq.next_schedule_cycle):
                    self.schedule(wq)
                if self._due(wq, wq.next_process_index, wq.next_process_cycle):
                    self.process(wq)
            else:
                if self._due(rq, rq.next_schedule_index, rq.next_schedule_cycle):
                    self.schedule(rq)
                if self._due(rq, rq.next_process_index, rq.next_process_cycle):
                    self.process(rq)

    @staticmethod
    def _oldest(candidates) -> Optional[int]:
        oldest_index, oldest_cycle = None, UINT64_MAX
        for index, entry in candidates:
            if entry.event_cycle < oldest_cycle:
                oldest_index, oldest_cycle = index, entry.event_cycle
        return oldest_index

    def schedule(self, queue) -> None:
        """Pick the oldest row-buffer hit, else the oldest ready request, and start it."""
        cfg = self.config
        ready = [
            (index, entry)
            for index, entry in queue.occupied()
            if not entry.scheduled and not self._bank(entry.address).working
        ]
        hits = [
            (index, entry)
            for index, entry in ready
            if self._bank(entry.address).open_row == cfg.row_of(entry.address)
        ]
        oldest_index = self._oldest(hits)
        row_buffer_hit = oldest_index is not None
        if oldest_index is None:
            oldest_index = self._oldest(ready)
        if oldest_index is None:
            return

        latency = cfg.tcas if row_buffer_hit else cfg.trp + cfg.trcd + cfg.tcas
        entry = queue[oldest_index]
        now = self._now(entry.cpu)
        channel = cfg.channel_of(entry.address)
        bank = self._bank(entry.address)

        bank.working = True
        bank.working_type = entry.type
        bank.cycle_available = now + latency
        bank.request_index = oldest_index
        bank.row_buffer_hit = row_buffer_hit
        if queue.is_wq:
            bank.is_write, bank.is_read = True, False
            self.scheduled_writes[channel] += 1
        else:
            bank.is_write, bank.is_read = False, True
            self.scheduled_reads[channel] += 1
        bank.open_row = cfg.row_of(entry.address)

        entry.scheduled = True
        entry.event_cycle = now + latency

        self.update_schedule_cycle(queue)
        self.update_process_cycle(queue)

    def process(self, queue) -> None:
        """Finish the next scheduled request if its bank and the data bus are free."""
        request_index = queue.next_process_index
        if request_index >= queue.size:
            raise RuntimeError(f"{queue.name} has no scheduled request to process")
        entry = queue[request_index]
        if entry is None:
            raise RuntimeError(f"{queue.name} slot {request_index} is empty")

        cpu = entry.cpu
        now = self._now(cpu)
        channel = self.config.channel_of(entry.address)
        bank = self._bank(entry.address)
        if bank.request_index != request_index:
            raise RuntimeError(
                f"{queue.name} slot {request_index} is not the request held by its bank"
            )

        if bank.cycle_available > now:
            return

        if self.dbus_cycle_available[channel] <= now:
            self.dbus_cycle_available[channel] = now + self.config.dbus_return_time
            if not queue.is_wq:
                entry.event_cycle = self.dbus_cycle_available[channel]
                self.upper_level_dcache[cpu].return_data(entry)
            if bank.row_buffer_hit:
                queue.row_buffer_hit += 1
            else:
                queue.row_buffer_miss += 1
            bank.release()
            if queue.is_wq:
                self.scheduled_writes[channel] -= 1
            else:
                self.scheduled_reads[channel] -= 1
            queue.remove(request_index)
            self.update_process_cycle(queue)
        else:
            # Data bus busy: fast-forward the bank to when the bus frees up.
            self.dbus_cycle_congested[channel] += self.dbus_cycle_available[channel] - now
            bank.cycle_available = self.dbus_cycle_available[channel]
            working = int(bank.working_type)
            op_type = int(entry.type)
            self.dbus_congested[NUM_TYPES][NUM_TYPES] += 1
            self.dbus_congested[NUM_TYPES][op_type] += 1
            self.dbus_congested[working][NUM_TYPES] += 1
            self.dbus_congested[working][op_type] += 1

    def add_rq(self, packet) -> Optional[int]:
        """Queue a read; return the slot it merged with, or None."""
        if not self.clock.all_warmed_up():
            self._return_upward(packet)
            return None

        channel = self.config.channel_of(packet.address)
        wq = self.wq[channel]
        wq_index = self.check_dram_queue(wq, packet)
        if wq_index is not None:
            packet.data = wq[wq_index].data
            self._return_upward(packet)
            self.access[1] += 1
            self.hit[1] += 1
            wq.forward += 1
            self.rq[channel].access += 1
            return None

        rq = self.rq[channel]
        index = self.check_dram_queue(rq, packet)
        if index is not None:
            return index

        if not rq.is_full():
            rq.insert(packet)
        self.update_schedule_cycle(rq)
        return None

    def add_wq(self, packet) -> Optional[int]:
        """Queue a write; return the slot it merged with, or None."""
        if not self.clock.all_warmed_up():
            return None

        channel = self.config.channel_of(packet.address)
        wq = self.wq[channel]
        index = self.check_dram_queue(wq, packet)
        if index is not None:
            return index

        if not wq.is_full():
            wq.insert(packet)
        self.update_schedule_cycle(wq)
        return None

    def add_pq(self, packet) -> Optional[int]:
        """Prefetches are not queued at main memory."""
        return None

    def return_data(self, packet) -> None:
        """Main memory is the last level, so nothing returns into it."""
        return None

    def update_schedule_cycle(self, queue) -> None:
        """Point the queue at its oldest unscheduled request."""
        index = self._oldest((i, e) for i, e in queue.occupied() if not e.scheduled)
        if index is None:
            queue.next_schedule_cycle, queue.next_schedule_index = UINT64_MAX, queue.size
        else:
            queue.next_schedule_cycle, queue.next_schedule_index = queue[index].event_cycle, index

    def update_process_cycle(self, queue) -> None:
        """Point the queue at its earliest-finishing scheduled request."""
        index = self._oldest((i, e) for i, e in queue.occupied() if e.scheduled)
        if index is None:
            queue.next_process_cycle, queue.next_process_index = UINT64_MAX, queue.size
        else:
            queue.next_process_cycle, queue.next_process_index = queue[index].event_cycle, index

    def check_dram_queue(self, queue, packet) -> Optional[int]:
        """Return the slot of a queued request for the same address, if any."""
        return queue.find_address(packet.address)

    def get_occupancy(self, queue_type, address) -> int:
        channel = self.config.channel_of(address)
        if queue_type == 1:
            return self.rq[channel].occupancy
        if queue_type == 2:
            return self.wq[channel].occupancy
        return 0

    def get_size(self, queue_type, address) -> int:
        channel = self.config.channel_of(address)
        if queue_type == 1:
            return self.rq[channel].size
        if queue_type == 2:
            return self.wq[channel].size
        return 0

    def increment_wq_full(self, address) -> None:
        self.wq[self.config.channel_of(address)].full += 1

    def reset_row_buffer_stats(self) -> None:
        """Clear row-buffer hit and miss counters at the end of warmup."""
        for queue in (*self.rq, *self.wq):
            queue.row_buffer_hit = 0
            queue.row_buffer_miss = 0

    def busy_stats_report(self, all_warmup_complete) -> str:
        """Render the bank-busy statistics as report lines."""
        lines = [f" All warmup complete: {all_warmup_complete}"]
        for channel, (reads, writes) in enumerate(zip(self.sum_cycles_read, self.sum_cycles_write)):
            lines.append(f"Channel {channel} Bank busy for read cycles: {reads}")
            lines.append(f"Channel {channel} Bank busy for write cycles: {writes}")
        for channel, (read_ranks, write_ranks) in enumerate(
            zip(self.banks_busy_read_cycles, self.banks_busy_write_cycles)
        ):
            lines.append(f"Channel {channel}")
            for rank, (read_counts, write_counts) in enumerate(zip(read_ranks, write_ranks)):
                lines.append(f"Rank {rank}")
                for busy, (reads, writes) in enumerate(zip(read_counts, write_counts)):
                    lines.append(f"{busy}banks busy for read cycles: {reads}")
                    lines.append(f"{busy}banks busy for write cycles: {writes}")
        return "\n".join(lines)