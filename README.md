# memsim

A cycle-level model of an off-chip DRAM memory controller, with the pieces
around it: address decoding, virtual-to-physical page allocation, cache
statistics reports and trace-file handling.

## Modules

- `memsim.dram`
  - `DramConfig` holds the DRAM geometry and timing in CPU cycles. The
    defaults are 1 channel, 1 rank, 8 banks, 65536 rows and 128 columns.
    Every count must be a power of two. The write-queue watermarks default to
    7/8 and 3/4 of the write-queue size.
  - `DramConfig.from_timings(cpu_freq, io_freq, trp_ns, trcd_ns, tcas_ns,
    low_bandwidth, **kwargs)` derives the latencies and the data-bus return
    time from frequencies in MHz and latencies in ns. With `low_bandwidth`
    the transfer rate is one eighth of `io_freq`.
  - `channel_of`, `bank_of`, `column_of`, `rank_of` and `row_of` split an
    address into its fields, channel in the lowest bits, then bank, column,
    rank and row. `summary()` returns a one-line description.
  - `AccessType` lists the request kinds.
  - `Packet` is a request.
  - `PacketQueue` is a fixed-size slot array with `insert`, `find_address`,
    `remove`, `is_full` and `occupancy`.
- `memsim.controller`
  - `SimulationClock` holds the per-core cycle counters and the warmup
    progress.
  - `BankRequest` holds the state of one bank.
  - `MemoryController` has one read queue and one write queue per channel.
    - Each cycle, `operate()` switches a channel into write mode when its
      write queue reaches the high watermark, or when its read queue is empty
      and writes are waiting. It leaves write mode when the write queue
      empties, or when reads are waiting and the write queue has dropped
      below the low watermark. Every switch adds the bus turn-around time.
    - `schedule()` picks the oldest request that hits an open row, and
      failing that the oldest request whose bank is free.
    - `process()` completes a request once its bank is ready and the data
      bus is free. If the bus is busy, it records the congestion instead.
    - Before every CPU has warmed up, `add_rq` returns reads straight to the
      level above and `add_wq` drops writes. After warmup, a read whose
      address is waiting in the write queue is answered from there.
    - `busy_stats_report()` renders the per-rank counts of busy banks.
- `memsim.paging`
  - `PageAllocator.translate(cpu, instr_id, va, unique_vpage)` maps virtual
    pages to physical pages. It allocates contiguous runs where it can and
    otherwise draws a random free page. Once `dram_pages` pages are in use,
    it takes the page of a mapping that is not recently used. An optional
    `invalidate` hook is called with the CPU, the evicted virtual page and
    the cache-line addresses of the reused physical page.
  - `fault_counts(cpu)` returns the minor and major fault counts.
  - `lg2`, `rotl64` and `rotr64` are helpers.
- `memsim.stats`
  - `CacheStats` holds per-CPU access, hit and miss counters and the
    prefetch counters. It has `record_roi`, `reset`, `roi_report` and
    `sim_report`.
  - `QueueCounters` holds the counters of one queue.
  - `CacheKind` names the cache.
  - `dram_report(controller)` renders the row-buffer, data-bus and bank-busy
    statistics of a `MemoryController`.
- `memsim.traces`
  - `decompress_command(path)` chooses `gunzip -c` or `xz -dc` from the
    letter after the last dot of the file name.
  - `open_trace(path)` starts that decompressor and returns the
    `subprocess.Popen`, whose stdout carries the trace.
  - `trace_seed(path)` sums the bytes of the third token from the end of the
    file name.
  - `read_context_switches(path)` parses `cycle cpu_a cpu_b` triples into
    `ContextSwitch` records.

## Installation

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Command line

```
memsim -warmup_instructions 1000000 -simulation_instructions 5000000 -traces workload-1.trace.xz
```

The command is configured for one CPU, so exactly one trace must be given.
It does the following:

1. Prints the knobs and the DRAM summary.
2. Checks that each trace exists and has a `.gz` or `.xz` style name.
3. Derives the seed from the trace names.
4. Reads the context-switch file, if one is given.
5. Sets up a `MemoryController` and a `PageAllocator`.

It exits with status 1 when a trace or the context-switch file is missing or
malformed.

Options:

| Option | Short form | Effect |
|---|---|---|
| `-warmup_instructions N` | `-w` | Sets the warmup length. The default is 10,000,000. |
| `-simulation_instructions N` | `-i` | Sets the region-of-interest length. The default is 10,000,000. |
| `-hide_heartbeat` | `-h` | Turns off heartbeat output. This is not a help flag. |
| `-cloudsuite` | `-c` | Marks the traces as using the CloudSuite instruction format. |
| `-cvp_trace` | `-v` | Marks the traces as CVP traces. |
| `-low_bandwidth` | `-b` | Runs the DRAM at one eighth of its transfer rate. |
| `-context_switch FILE` | `-s` | Reads a context-switch schedule. |
| `-traces FILE...` | `-t` | Gives one compressed trace per CPU. |

## Library use

```python
from memsim.controller import MemoryController, SimulationClock
from memsim.dram import DramConfig, Packet

config = DramConfig.from_timings(4000, 3200, 12.5, 12.5, 12.5, False)
print(config.summary())
# Off-chip DRAM Size: 4096 MB Channels: 1 Width: 64-bit Data Rate: 3200 MT/s


class Sink:
    def return_data(self, packet):
        print("returned", hex(packet.address), "at cycle", packet.event_cycle)


clock = SimulationClock(num_cpus=1)
clock.all_warmup_complete = 1
controller = MemoryController(config, clock, upper_level_dcache={0: Sink()})
controller.add_rq(Packet(address=0x1234))
for _ in range(200):
    clock.tick(0)
    controller.operate()
```

## What it does not do

There is no processor core, cache hierarchy or trace-driven run loop in this
package. The `memsim` command validates its inputs and builds the memory
system, but it does not read instructions from the traces or simulate them.
`-hide_heartbeat`, `-cloudsuite` and `-cvp_trace` are parsed and recorded in
`Options`, and nothing else acts on them.

`CacheStats` only holds and reports counters. Filling them in is up to the
caller.