import pytest

from memsim.controller import BankRequest, MemoryController, SimulationClock
from memsim.dram import NUM_TYPES, DramConfig, Packet


class RecordingCache:
    def __init__(self):
        self.returned = []

    def return_data(self, packet):
        self.returned.append(packet)


def make_config():
    return DramConfig(
        channels=1,
        ranks=1,
        banks=8,
        rows=1024,
        columns=128,
        rq_size=4,
        wq_size=4,
        trp=10,
        trcd=10,
        tcas=10,
        dbus_return_time=5,
        dbus_turn_around_time=3,
    )


def make_controller(warmed=True):
    clock = SimulationClock(1, all_warmup_complete=1 if warmed else 0)
    icache, dcache = RecordingCache(), RecordingCache()
    mc = MemoryController(make_config(), clock, {0: icache}, {0: dcache})
    return mc, clock, icache, dcache


ROW1 = 0x400
ROW1_COL1 = 0x408


def run_until(mc, clock, done, limit=500):
    for _ in range(limit):
        clock.tick(0)
        mc.operate()
        if done():
            return True
    return False


def test_clock_tick_and_warmup():
    clock = SimulationClock(2)
    assert clock.tick(1) == 1
    assert clock.cycles == [0, 1]
    assert not clock.all_warmed_up()
    clock.all_warmup_complete = 2
    assert clock.all_warmed_up()


def test_bank_release_clears_request():
    bank = BankRequest(working=True, request_index=2, row_buffer_hit=True, is_read=True, open_row=5)
    bank.release()
    assert (bank.working, bank.request_index, bank.row_buffer_hit, bank.is_read) == (
        False,
        None,
        False,
        False,
    )
    assert bank.open_row == 5


def test_read_before_warmup_returns_immediately():
    mc, _, icache, dcache = make_controller(warmed=False)
    assert mc.add_rq(Packet(address=ROW1)) is None
    assert len(dcache.returned) == 1
    assert mc.rq[0].occupancy == 0
    mc.add_rq(Packet(address=ROW1_COL1, instruction=True))
    assert [p.address for p in icache.returned] == [ROW1_COL1]


def test_write_before_warmup_is_dropped():
    mc, _, _, _ = make_controller(warmed=False)
    assert mc.add_wq(Packet(address=ROW1)) is None
    assert mc.wq[0].occupancy == 0


def test_add_rq_inserts_and_merges_duplicates():
    mc, _, _, _ = make_controller()
    assert mc.add_rq(Packet(address=ROW1)) is None
    assert mc.rq[0].occupancy == 1
    assert mc.rq[0].next_schedule_index == 0
    assert mc.add_rq(Packet(address=ROW1)) == 0
    assert mc.rq[0].occupancy == 1


def test_read_forwarded_from_write_queue():
    mc, _, _, dcache = make_controller()
    mc.add_wq(Packet(address=ROW1, data=42))
    read = Packet(address=ROW1)
    assert mc.add_rq(read) is None
    assert dcache.returned[0].data == 42
    assert mc.wq[0].forward == 1
    assert mc.rq[0].access == 1
    assert mc.hit[1] == 1 and mc.access[1] == 1
    assert mc.rq[0].occupancy == 0


def test_row_miss_then_row_hit_latency():
    mc, clock, _, dcache = make_controller()
    cfg = mc.config
    mc.add_rq(Packet(address=ROW1))
    mc.schedule(mc.rq[0])
    entry = mc.rq[0][0]
    assert entry.scheduled
    assert entry.event_cycle == cfg.trp + cfg.trcd + cfg.tcas
    assert mc.scheduled_reads[0] == 1

    assert run_until(mc, clock, lambda: dcache.returned)
    assert mc.rq[0].row_buffer_miss == 1
    assert mc.rq[0].occupancy == 0
    assert mc.scheduled_reads[0] == 0

    now = clock.cycles[0]
    mc.add_rq(Packet(address=ROW1_COL1, event_cycle=now))
    mc.schedule(mc.rq[0])
    slot = mc.rq[0].find_address(ROW1_COL1)
    assert mc.rq[0][slot].event_cycle == now + cfg.tcas
    assert mc.bank_requests[0][0][0].row_buffer_hit


def test_full_read_returns_on_data_bus_cycle():
    mc, clock, _, dcache = make_controller()
    mc.add_rq(Packet(address=ROW1, instr_id=7))
    assert run_until(mc, clock, lambda: dcache.returned)
    returned = dcache.returned[0]
    assert returned.instr_id == 7
    assert returned.event_cycle == mc.dbus_cycle_available[0]
    assert mc.dbus_cycle_available[0] == clock.cycles[0] + mc.config.dbus_return_time
    assert not mc.bank_requests[0][0][0].working


def test_writes_drain_in_write_mode():
    mc, clock, _, _ = make_controller()
    mc.add_wq(Packet(address=ROW1))
    mc.operate()
    assert mc.write_mode[0]
    assert mc.dbus_cycle_available[0] == mc.config.dbus_turn_around_time
    assert mc.scheduled_writes[0] == 1
    assert mc.bank_requests[0][0][0].is_write

    assert run_until(mc, clock, lambda: mc.wq[0].occupancy == 0)
    assert mc.wq[0].row_buffer_miss == 1
    assert mc.scheduled_writes[0] == 0
    mc.operate()
    assert not mc.write_mode[0]


def test_reset_remain_requests_unschedules():
    mc, clock, _, _ = make_controller()
    mc.add_rq(Packet(address=ROW1))
    mc.schedule(mc.rq[0])
    mc.reset_remain_requests(mc.rq[0], 0)
    entry = mc.rq[0][0]
    bank = mc.bank_requests[0][0][0]
    assert not entry.scheduled
    assert entry.event_cycle == clock.cycles[0]
    assert mc.scheduled_reads[0] == 0
    assert not bank.working and bank.request_index is None
    assert bank.open_row is None
    assert mc.rq[0].next_process_index == mc.rq[0].size
    assert mc.rq[0].next_schedule_index == 0


def test_process_with_nothing_scheduled_raises():
    mc, _, _, _ = make_controller()
    mc.add_rq(Packet(address=ROW1))
    with pytest.raises(RuntimeError):
        mc.process(mc.rq[0])


def test_process_mismatched_bank_raises():
    mc, _, _, _ = make_controller()
    mc.add_rq(Packet(address=ROW1))
    mc.schedule(mc.rq[0])
    mc.bank_requests[0][0][0].request_index = 3
    with pytest.raises(RuntimeError):
        mc.process(mc.rq[0])


def test_congested_data_bus_fast_forwards_bank():
    mc, clock, _, dcache = make_controller()
    mc.add_rq(Packet(address=ROW1))
    mc.schedule(mc.rq[0])
    mc.dbus_cycle_available[0] = 1000
    clock.cycles[0] = 30
    mc.process(mc.rq[0])
    assert dcache.returned == []
    assert mc.dbus_congested[NUM_TYPES][NUM_TYPES] == 1
    assert mc.dbus_cycle_congested[0] == 1000 - 30
    assert mc.bank_requests[0][0][0].cycle_available == 1000


def test_occupancy_and_size_queries():
    mc, _, _, _ = make_controller()
    mc.add_rq(Packet(address=ROW1))
    mc.add_wq(Packet(address=ROW1_COL1))
    mc.add_wq(Packet(address=ROW1_COL1 + 8))
    assert mc.get_occupancy(1, ROW1) == 1
    assert mc.get_occupancy(2, ROW1) == 2
    assert mc.get_occupancy(3, ROW1) == 0
    assert mc.get_size(1, ROW1) == 4
    assert mc.get_size(0, ROW1) == 0
    mc.increment_wq_full(ROW1)
    assert mc.wq[0].full == 1


def test_full_read_queue_drops_new_requests():
    mc, _, _, _ = make_controller()
    for n in range(1, 6):
        mc.add_rq(Packet(address=n << 10))
    assert mc.rq[0].occupancy == mc.rq[0].size
    assert mc.rq[0].find_address(5 << 10) is None


def test_check_dram_queue_absent_and_add_pq():
    mc, _, _, _ = make_controller()
    assert mc.check_dram_queue(mc.rq[0], Packet(address=ROW1)) is None
    assert mc.add_pq(Packet(address=ROW1)) is None
    assert mc.rq[0].occupancy == 0


def test_busy_bank_statistics_and_report():
    mc, _, _, _ = make_controller()
    mc.add_rq(Packet(address=ROW1))
    mc.operate()
    assert mc.banks_busy_read_cycles[0][0][0] == 1
    mc.operate()
    assert mc.banks_busy_read_cycles[0][0][1] == 1
    report = mc.busy_stats_report(2)
    lines = report.splitlines()
    assert lines[0] == " All warmup complete: 2"
    assert "1banks busy for read cycles: 1" in lines
    assert lines.count("Rank 0") == 1


def test_reset_row_buffer_stats():
    mc, clock, _, dcache = make_controller()
    mc.add_rq(Packet(address=ROW1))
    assert run_until(mc, clock, lambda: dcache.returned)
    assert mc.rq[0].row_buffer_miss == 1
    mc.reset_row_buffer_stats()
    assert mc.rq[0].row_buffer_miss == 0 and mc.rq[0].row_buffer_hit == 0