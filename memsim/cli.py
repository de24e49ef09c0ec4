"""Command-line entry point: read the knobs, check the inputs, set up memory."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from memsim.controller import MemoryController, SimulationClock
from memsim.dram import DramConfig
from memsim.paging import PageAllocator
from memsim.traces import (
    ContextSwitch,
    UnsupportedTraceError,
    decompress_command,
    read_context_switches,
    trace_seed,
)

NUM_CPUS = 1
CPU_FREQ = 4000
DRAM_IO_FREQ = 3200
TRP_NS = 12.5
TRCD_NS = 12.5
TCAS_NS = 12.5

BANNER = "*** ChampSim Multicore Out-of-Order Simulator ***"


@dataclass
class Options:
    """Run-time knobs of a simulation."""

    warmup_instructions: int = 10_000_000
    simulation_instructions: int = 10_000_000
    show_heartbeat: bool = True
    cloudsuite: bool = False
    cvp_trace: bool = False
    low_bandwidth: bool = False
    context_switch: bool = False
    context_switch_file: Optional[Path] = None
    traces: Tuple[Path, ...] = ()
    num_cpus: int = NUM_CPUS


def _count(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an instruction count: {text!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError(f"instruction count must not be negative: {value}")
    return value


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="memsim", add_help=False)
    parser.add_argument(
        "-warmup_instructions", "--warmup_instructions", "-w",
        dest="warmup_instructions", type=_count, default=Options.warmup_instructions,
    )
    parser.add_argument(
        "-simulation_instructions", "--simulation_instructions", "-i",
        dest="simulation_instructions", type=_count, default=Options.simulation_instructions,
    )
    parser.add_argument(
        "-hide_heartbeat", "--hide_heartbeat", "-h",
        dest="show_heartbeat", action="store_false",
    )
    parser.add_argument("-cloudsuite", "--cloudsuite", "-c", dest="cloudsuite", action="store_true")
    parser.add_argument("-cvp_trace", "--cvp_trace", "-v", dest="cvp_trace", action="store_true")
    parser.add_argument(
        "-low_bandwidth", "--low_bandwidth", "-b", dest="low_bandwidth", action="store_true"
    )
    parser.add_argument(
        "-context_switch", "--context_switch", "-s", dest="context_switch_file", default=None
    )
    parser.add_argument("-traces", "--traces", "-t", dest="traces", nargs="+", default=[])
    return parser


def parse_args(argv) -> Options:
    """Turn command-line arguments into Options; exits with a usage error on bad input."""
    if argv is None:
        argv = sys.argv[1:]
    parser = _parser()
    namespace = parser.parse_args(list(argv))
    options = Options(
        warmup_instructions=namespace.warmup_instructions,
        simulation_instructions=namespace.simulation_instructions,
        show_heartbeat=namespace.show_heartbeat,
        cloudsuite=namespace.cloudsuite,
        cvp_trace=namespace.cvp_trace,
        low_bandwidth=namespace.low_bandwidth,
        context_switch=namespace.context_switch_file is not None,
        context_switch_file=(
            Path(namespace.context_switch_file) if namespace.context_switch_file else None
        ),
        traces=tuple(Path(trace) for trace in namespace.traces),
    )
    if len(options.traces) > options.num_cpus:
        parser.error("Too many traces for the configured number of cores")
    if len(options.traces) < options.num_cpus:
        parser.error("Not enough traces for the configured number of cores")
    return options


def _check_traces(traces) -> int:
    """Make sure every trace exists and can be decompressed; return the combined seed."""
    seed = 0
    for cpu, trace in enumerate(traces):
        print(f"CPU {cpu} runs {trace}")
        if not trace.is_file():
            raise FileNotFoundError(f"trace file does not exist: {trace}")
        decompress_command(trace)
        seed += trace_seed(trace)
    return seed


def _load_context_switches(path: Path) -> List[ContextSwitch]:
    switches = read_context_switches(path)
    print("CONTEXT SWITCH FILE EXIST")
    for switch in switches:
        cpu_a, cpu_b = switch.swap_cpu
        print(f"print file:{switch.index} {switch.cycle}- {cpu_a}{cpu_b}")
    return switches


def main(argv=None) -> int:
    """Parse the knobs, validate traces and set up the memory system."""
    options = parse_args(argv)

    print()
    print(BANNER)
    print()
    if options.low_bandwidth:
        print("Low Bandwidth")
    print(f"Warmup Instructions: {options.warmup_instructions}")
    print(f"Simulation Instructions: {options.simulation_instructions}")
    print(f"Number of CPUs: {options.num_cpus}")

    config = DramConfig.from_timings(
        CPU_FREQ, DRAM_IO_FREQ, TRP_NS, TRCD_NS, TCAS_NS, options.low_bandwidth
    )
    print(config.summary())

    try:
        seed = _check_traces(options.traces)
        switches = (
            _load_context_switches(options.context_switch_file)
            if options.context_switch_file is not None
            else []
        )
    except (FileNotFoundError, UnsupportedTraceError, ValueError) as exc:
        print(f"*** {exc} ***", file=sys.stderr)
        return 1

    clock = SimulationClock(num_cpus=options.num_cpus)
    controller = MemoryController(config, clock)
    allocator = PageAllocator(num_cpus=options.num_cpus, seed=seed)
    print(
        f"Memory ready: {len(controller.rq)} channel(s), seed {seed}, "
        f"{len(switches)} context switch(es), {allocator.dram_pages} DRAM pages"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())