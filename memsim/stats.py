"""Per-cache access counters and the statistics reports printed after a run."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum, auto

from memsim.dram import NUM_TYPES

_ACCESS_LABELS = (
    " LOAD      ACCESS: ",
    " RFO       ACCESS: ",
    " PREFETCH  ACCESS: ",
    " WRITEBACK ACCESS: ",
    " LOAD TRANSLATION ACCESS: ",
    " PREFETCH TRANSLATION ACCESS: ",
    " TRANSLATION FROM L1D PREFETCHER ACCESS: ",
)

_BTB_LABELS = (
    " BRANCH_DIRECT_JUMP\tACCESS: ",
    " BRANCH_INDIRECT\tACCESS: ",
    " BRANCH_CONDITIONAL\tACCESS: ",
    " BRANCH_DIRECT_CALL\tACCESS: ",
    " BRANCH_INDIRECT_CALL\tACCESS: ",
    " BRANCH_RETURN\tACCESS: ",
    " BRANCH_OTHER ACCESS: ",
)

_EVICTION_LABELS = (
    ("Instructions Evicting Data ", "instr_evicting_data"),
    ("Translations Evicting Data ", "transl_evicting_data"),
    ("Data Evicting Data ", "data_evicting_data"),
    ("Instructions Evicting Instructions ", "instr_evicting_instr"),
    ("Translations Evicting Instructions ", "transl_evicting_instr"),
    ("Data Evicting Instructions ", "data_evicting_instr"),
    ("Instructions Evicting Translations ", "instr_evicting_transl"),
    ("Translations Evicting Translations ", "transl_evicting_transl"),
    ("Data Evicting Translations ", "data_evicting_transl"),
)

# Counters cleared at the end of warmup.
_RESETTABLE = (
    "total_miss_latency",
    "pf_requested",
    "pf_issued",
    "pf_useful",
    "pf_useless",
    "pf_fill",
    "pf_late",
    "pf_lower_level",
    "pf_lower_level_test",
    "pf_same_fill_level",
    "pf_lower_fill_level",
    "pf_dropped",
    "sum_pq_occupancy",
    "pf_pushed_from_l2c",
    "l1d_data_hit",
    "l2c_data_hit",
    "llc_data_hit",
    "llc_data_miss",
    "getting_hint_from_l2",
    "sending_hint_to_llc",
    "stlb_hints_to_l2",
    *(attr for _, attr in _EVICTION_LABELS),
)


class CacheKind(Enum):
    """Which structure of the hierarchy a set of statistics belongs to."""

    ITLB = auto()
    DTLB = auto()
    STLB = auto()
    L1I = auto()
    L1D = auto()
    L2C = auto()
    LLC = auto()
    BTB = auto()
    PTW = auto()
    PSCL5 = auto()
    PSCL4 = auto()
    PSCL3 = auto()
    PSCL2 = auto()
    DTLB_PB = auto()


_PAGE_STRUCTURE_CACHES = {CacheKind.PSCL5, CacheKind.PSCL4, CacheKind.PSCL3, CacheKind.PSCL2}


def _div(numerator, denominator) -> float:
    """Floating division that yields inf or nan on a zero denominator."""
    if denominator == 0:
        if numerator == 0:
            return math.nan
        return math.inf if numerator > 0 else -math.inf
    return numerator / denominator


def _fmt(value) -> str:
    """Render a number the way a default-precision stream would."""
    if isinstance(value, float):
        if math.isnan(value):
            return "nan"
        if math.isinf(value):
            return "inf" if value > 0 else "-inf"
        return f"{value:g}"
    return str(value)


def _w(value) -> str:
    return f"{_fmt(value):>10}"


def _access_line(name, label, access, hit, miss, num_instrs) -> str:
    return (
        f"{name}{label}{_w(access)}  HIT: {_w(hit)}  MISS: {_w(miss)}"
        f"  HIT %: {_w(_div(hit * 100.0, access))}"
        f"  MISS %: {_w(_div(miss * 100.0, access))}"
        f"   MPKI: {_fmt(_div(miss * 1000.0, num_instrs))}"
    )


@dataclass
class QueueCounters:
    """Traffic counters of one cache queue."""

    access: int = 0
    merged: int = 0
    to_cache: int = 0
    forward: int = 0
    full: int = 0

    def reset(self) -> None:
        self.access = self.merged = self.to_cache = self.forward = self.full = 0

    def line(self, name: str, tag: str) -> str:
        return (
            f"{name} {tag}\tACCESS: {_w(self.access)}\tFORWARD: {_w(self.forward)}"
            f"\tMERGED: {_w(self.merged)}\tTO_CACHE: {_w(self.to_cache)}"
        )


def _per_cpu(num_cpus: int) -> list:
    return [[0] * NUM_TYPES for _ in range(num_cpus)]


@dataclass
class CacheStats:
    """Access, hit, miss and prefetch counters of one cache for every CPU."""

    name: str
    kind: CacheKind
    num_cpus: int = 1

    sim_access: list = field(init=False)
    sim_hit: list = field(init=False)
    sim_miss: list = field(init=False)
    sim_instr_miss: list = field(init=False)
    roi_access: list = field(init=False)
    roi_hit: list = field(init=False)
    roi_miss: list = field(init=False)
    roi_instr_miss: list = field(init=False)
    access: list = field(init=False)
    hit: list = field(init=False)
    miss: list = field(init=False)
    mshr_merged: list = field(init=False)
    stall: list = field(init=False)
    rq: QueueCounters = field(default_factory=QueueCounters)
    wq: QueueCounters = field(default_factory=QueueCounters)
    pq: QueueCounters = field(default_factory=QueueCounters)

    total_miss_latency: int = 0
    pf_requested: int = 0
    pf_issued: int = 0
    pf_useful: int = 0
    pf_useless: int = 0
    pf_fill: int = 0
    pf_late: int = 0
    pf_lower_level: int = 0
    pf_lower_level_test: int = 0
    pf_same_fill_level: int = 0
    pf_lower_fill_level: int = 0
    pf_dropped: int = 0
    pf_miss_l1: int = 0
    sum_pq_occupancy: int = 0
    pf_pushed_from_l2c: int = 0
    l1d_data_hit: int = 0
    l2c_data_hit: int = 0
    llc_data_hit: int = 0
    llc_data_miss: int = 0
    getting_hint_from_l2: int = 0
    sending_hint_to_llc: int = 0
    stlb_hints_to_l2: int = 0
    instr_evicting_data: int = 0
    data_evicting_instr: int = 0
    data_evicting_transl: int = 0
    transl_evicting_data: int = 0
    instr_evicting_transl: int = 0
    transl_evicting_instr: int = 0
    data_evicting_data: int = 0
    instr_evicting_instr: int = 0
    transl_evicting_transl: int = 0
    unique_region_count: int = 0
    region_conflicts: int = 0
    cross_page_prefetch_requests: int = 0
    same_page_prefetch_requests: int = 0

    def __post_init__(self) -> None:
        if self.num_cpus < 1:
            raise ValueError("at least one CPU is required")
        for attr in (
            "sim_access", "sim_hit", "sim_miss", "sim_instr_miss",
            "roi_access", "roi_hit", "roi_miss", "roi_instr_miss",
        ):
            setattr(self, attr, _per_cpu(self.num_cpus))
        for attr in ("access", "hit", "miss", "mshr_merged", "stall"):
            setattr(self, attr, [0] * NUM_TYPES)

    def record_roi(self, cpu) -> None:
        """Freeze the current counters of a CPU as its region-of-interest result."""
        self.roi_access[cpu] = list(self.sim_access[cpu])
        self.roi_hit[cpu] = list(self.sim_hit[cpu])
        self.roi_miss[cpu] = list(self.sim_miss[cpu])
        self.roi_instr_miss[cpu] = list(self.sim_instr_miss[cpu])

    def reset(self, cpu) -> None:
        """Clear the counters gathered during warmup."""
        for counters in (self.access, self.hit, self.miss, self.mshr_merged, self.stall):
            counters[:] = [0] * NUM_TYPES
        for counters in (self.sim_access, self.sim_hit, self.sim_miss, self.sim_instr_miss):
            counters[cpu] = [0] * NUM_TYPES
        for queue in (self.rq, self.wq, self.pq):
            queue.reset()
        for attr in _RESETTABLE:
            setattr(self, attr, 0)

    def roi_report(self, cpu, num_instrs) -> str:
        """Region-of-interest report of one CPU."""
        name = self.name
        access, hit, miss = self.roi_access[cpu], self.roi_hit[cpu], self.roi_miss[cpu]
        instr_miss = self.roi_instr_miss[cpu]
        total_access, total_hit, total_miss = sum(access), sum(hit), sum(miss)
        lines = []

        if total_access:
            lines.append(
                _access_line(
                    name, " TOTAL     ACCESS: ", total_access, total_hit, total_miss, num_instrs
                )
            )

        if self.kind is CacheKind.BTB:
            for label, a, h, m in zip(_BTB_LABELS, access, hit, miss):
                lines.append(f"{name}{label}{_w(a)}  HIT: {_w(h)}  MISS: {_w(m)}")
            lines.append("")
            return "\n".join(lines)

        is_l2c = self.kind is CacheKind.L2C
        for kind, label in enumerate(_ACCESS_LABELS):
            if not access[kind]:
                continue
            lines.append(_access_line(name, label, access[kind], hit[kind], miss[kind], num_instrs))
            if kind == 2:
                lines.append(f"AGUS PREFETCH L1 MISS: {self.pf_miss_l1}")
            if is_l2c and kind in (0, 2):
                what = "LOAD" if kind == 0 else "PREFETCH"
                data_mpki = _div((miss[kind] - instr_miss[kind]) * 1000.0, num_instrs)
                instr_mpki = _div(instr_miss[kind] * 1000.0, num_instrs)
                lines.append(f"{name} DATA {what} MPKI: {_fmt(data_mpki)}")
                lines.append(f"{name} INSTRUCTION {what} MPKI: {_fmt(instr_mpki)}")

        lines.append(
            f"{name} PREFETCH  REQUESTED: {_w(self.pf_requested)}  ISSUED: {_w(self.pf_issued)}"
            f"  USEFUL: {_w(self.pf_useful)}  USELESS: {_w(self.pf_useless)}"
        )
        accuracy = _div(self.pf_useful * 100.0, self.pf_lower_level)
        lines.append(
            f"{name} USEFUL LOAD PREFETCHES: {_w(self.pf_useful)}"
            f" PREFETCH ISSUED TO LOWER LEVEL: {_w(self.pf_lower_level)}"
            f"  ACCURACY: {_fmt(accuracy)}"
        )
        lines.append(
            f"{name} TIMELY PREFETCHES: {_w(self.pf_useful)} LATE PREFETCHES: {self.pf_late}"
            f" DROPPED PREFETCHES: {self.pf_dropped}"
        )
        lines.append(
            f"{name} PREFETCHES SAME FILL-ORIGIN LEVEL: {self.pf_same_fill_level}"
            f" DIFFERENT FILL-ORIGIN LEVEL: {self.pf_lower_fill_level}"
        )

        if self.kind not in _PAGE_STRUCTURE_CACHES:
            latency = _div(1.0 * self.total_miss_latency, total_miss)
            lines.append(f"{name} AVERAGE MISS LATENCY: {_fmt(latency)} cycles")

        for tag, queue in (("RQ", self.rq), ("WQ", self.wq), ("PQ", self.pq)):
            if queue.access:
                lines.append(queue.line(name, tag))
        lines.append("")

        if self.kind is CacheKind.L1D:
            lines += [
                f"{name} UNIQUE REGIONS ACCESSED: {self.unique_region_count}",
                f"{name} REGIONS CONFLICTS: {self.region_conflicts}",
                f"{name} Cross Page Prefetch Requests: {self.cross_page_prefetch_requests}",
                f"{name} Same Page Prefetch Requests: {self.same_page_prefetch_requests}",
                f"{name} ROI Sum of L1D PQ occupancy: {self.sum_pq_occupancy}",
                f"{name} PREFETCHES PUSHED FROM L2C: {self.pf_pushed_from_l2c}",
            ]
        if self.kind is CacheKind.STLB:
            lines += [
                f"{name} Hit, L1D data hit: {self.l1d_data_hit}",
                f"{name} Hit, L2C data hit: {self.l2c_data_hit}",
                f"{name} Hit, LLC data hit: {self.llc_data_hit}",
                f"{name} Hit, LLC data miss: {self.llc_data_miss}",
                f"{name} STLB hints to L2: {self.stlb_hints_to_l2}",
            ]
        if is_l2c:
            lines += [f"{name} {label}{getattr(self, attr)}" for label, attr in _EVICTION_LABELS]
            lines.append(f"{name} Dense regions hint from L2: {self.getting_hint_from_l2}")
        if self.kind is CacheKind.LLC:
            lines.append(f"{name} Dense regions hint to LLC: {self.sending_hint_to_llc}")
        return "\n".join(lines)

    def sim_report(self, cpu, num_instrs) -> str:
        """Whole-simulation report of one CPU, excluding warmup."""
        access, hit, miss = self.sim_access[cpu], self.sim_hit[cpu], self.sim_miss[cpu]
        lines = [
            _access_line(
                self.name, " TOTAL     ACCESS: ", sum(access), sum(hit), sum(miss), num_instrs
            )
        ]
        for kind, label in enumerate(_ACCESS_LABELS[:4]):
            lines.append(
                _access_line(self.name, label, access[kind], hit[kind], miss[kind], num_instrs)
            )
        return "\n".join(lines)


def dram_report(controller) -> str:
    """Row-buffer, data-bus and bank-busy statistics of a memory controller."""
    congested = controller.dbus_congested[NUM_TYPES][NUM_TYPES]
    lines = ["", "DRAM Statistics"]
    for channel, (rq, wq) in enumerate(zip(controller.rq, controller.wq)):
        lines += [
            f" CHANNEL {channel}",
            f" RQ ROW_BUFFER_HIT: {_w(rq.row_buffer_hit)}"
            f"  ROW_BUFFER_MISS: {_w(rq.row_buffer_miss)}",
            f" DBUS_CONGESTED: {_w(congested)}",
            f" WQ ROW_BUFFER_HIT: {_w(wq.row_buffer_hit)}"
            f"  ROW_BUFFER_MISS: {_w(wq.row_buffer_miss)}  FULL: {_w(wq.full)}",
            "",
        ]
    total_congested_cycle = sum(controller.dbus_cycle_congested)
    if congested:
        lines.append(f" AVG_CONGESTED_CYCLE: {total_congested_cycle // congested}")
    else:
        lines.append(" AVG_CONGESTED_CYCLE: -")
    lines.append(controller.busy_stats_report(controller.clock.all_warmup_complete))
    return "\n".join(lines)