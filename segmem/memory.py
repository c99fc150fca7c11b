"""Segmented main memory: holes, segments, process tables and compaction."""

from __future__ import annotations

import bisect
import logging
import threading
from dataclasses import dataclass
from typing import Optional

from segmem.config import Algorithm, MemoryConfig
from segmem.models import Hole, MemoryReply, ProcessTable, Segment, find_segment_by_id

log = logging.getLogger(__name__)


class MemoryManagerError(Exception):
    """A memory request could not be carried out."""


class SegmentZeroTooLarge(MemoryManagerError):
    """Segment 0 is larger than the CPU allows a segment to be."""


class ProcessNotFound(MemoryManagerError, LookupError):
    """No segment table exists for the requested process."""


@dataclass(frozen=True)
class CreationResult:
    """Outcome of a segment creation request."""

    reply: MemoryReply
    base: Optional[int] = None


def _discard(items: list, target: object) -> bool:
    """Remove ``target`` itself (not an equal object) from ``items``."""
    for index, item in enumerate(items):
        if item is target:
            del items[index]
            return True
    return False


class MemoryManager:
    """Owns the user space and the administrative structures around it."""

    def __init__(self, config: MemoryConfig, max_segment_size: int) -> None:
        if config.segment_zero_size > max_segment_size:
            log.error(
                "Segment 0 exceeds the maximum size allowed by the CPU "
                "(segment 0: %d, maximum: %d)",
                config.segment_zero_size,
                max_segment_size,
            )
            raise SegmentZeroTooLarge(
                f"segment 0 size {config.segment_zero_size} exceeds the CPU "
                f"maximum of {max_segment_size}"
            )
        self.config = config
        self.max_segment_size = max_segment_size
        self.lock = threading.Lock()
        self.memory = bytearray(config.memory_size)
        self.holes: list[Hole] = []
        self.segments: list[Segment] = []
        self.processes: list[ProcessTable] = []

        first = self.add_hole(0, config.memory_size)
        self.segment_zero = self.new_segment(0, 0, config.segment_zero_size)
        first.base += config.segment_zero_size
        first.size -= config.segment_zero_size
        if first.size <= 0:
            _discard(self.holes, first)
        log.info("Administrative structures initialised")

    # ------------------------------ hole search ------------------------------ #

    def find_free_hole(self, size: int) -> Optional[Hole]:
        """Hole chosen by the configured algorithm; it stays in the table."""
        algorithm = self.config.algorithm
        if algorithm is Algorithm.FIRST:
            return self.first_fit(size)
        if algorithm is Algorithm.BEST:
            return self.best_fit(size)
        return self.worst_fit(size)

    def first_fit(self, size: int) -> Optional[Hole]:
        """Lowest-addressed hole big enough for ``size``."""
        return next((h for h in self.holes if h.size >= size), None)

    def best_fit(self, size: int) -> Optional[Hole]:
        """Smallest hole big enough for ``size``; the last one on ties."""
        best = None
        smallest = self.config.memory_size
        for hole in self.holes:
            if size <= hole.size <= smallest:
                smallest = hole.size
                best = hole
        return best

    def worst_fit(self, size: int) -> Optional[Hole]:
        """Largest hole big enough for ``size``; the first one on ties."""
        worst = None
        largest = 0
        for hole in self.holes:
            if hole.size > largest and hole.size >= size:
                largest = hole.size
                worst = hole
        return worst

    # ------------------------------ hole table ------------------------------ #

    def _insert_hole(self, hole: Hole) -> Hole:
        bisect.insort_right(self.holes, hole, key=lambda h: h.base)
        return hole

    def add_hole(self, base: int, size: int) -> Hole:
        """Create a hole and insert it keeping the table ordered by base."""
        return self._insert_hole(Hole(base, size))

    def release(self, base: int, size: int) -> Hole:
        """Free a block, merging it with the holes on either side."""
        hole = Hole(base, size)
        before = self.hole_ending_at(base)
        after = self.hole_at_base(base + size)
        if before is not None:
            log.debug(
                "Merging holes: base %d size %d -- base %d size %d",
                hole.base, hole.size, before.base, before.size,
            )
            hole.base = before.base
            hole.size += before.size
            _discard(self.holes, before)
        if after is not None:
            log.debug(
                "Merging holes: base %d size %d -- base %d size %d",
                hole.base, hole.size, after.base, after.size,
            )
            hole.size += after.size
            _discard(self.holes, after)
        log.debug("Resulting hole: base %d size %d", hole.base, hole.size)
        return self._insert_hole(hole)

    def hole_at_base(self, base: int) -> Optional[Hole]:
        return next((h for h in self.holes if h.base == base), None)

    def hole_ending_at(self, end: int) -> Optional[Hole]:
        return next((h for h in self.holes if h.end() == end), None)

    # ------------------------------ segments ------------------------------ #

    def new_segment(self, segment_id: int, base: int, size: int) -> Segment:
        """Create a segment and record it in the global segment list."""
        segment = Segment(segment_id, base, size)
        self.segments.append(segment)
        return segment

    def add_segment_to_process(self, segment: Segment, pid: int) -> None:
        table = self.find_process(pid)
        table.segments.append(segment)
        log.debug(
            "Segment %d added to process %d: base %d, size %d",
            segment.id, pid, segment.base, segment.size,
        )

    def find_process(self, pid: int) -> ProcessTable:
        """Segment table of process ``pid``."""
        for table in self.processes:
            if table.pid == pid:
                return table
        log.error("No segment table for process %d", pid)
        raise ProcessNotFound(f"no segment table for process {pid}")

    def find_segment(self, pid: int, segment_id: int) -> Segment:
        """Segment ``segment_id`` of process ``pid``."""
        segment = find_segment_by_id(self.find_process(pid).segments, segment_id)
        if segment is None:
            raise MemoryManagerError(
                f"process {pid} has no segment {segment_id}"
            )
        return segment

    def find_segment_by_base(self, base: int) -> Optional[Segment]:
        """Segment of the global list that starts at ``base``."""
        return next((s for s in self.segments if s.base == base), None)

    def remove_segment(self, segment: Segment) -> None:
        """Drop a segment from the global list and every process table."""
        if not _discard(self.segments, segment):
            raise MemoryManagerError(f"segment {segment.id} is not in memory")
        for table in self.processes:
            _discard(table.segments, segment)
        log.debug(
            "Segment %d removed from memory: base %d, size %d",
            segment.id, segment.base, segment.size,
        )

    # ------------------------------ kernel requests ------------------------------ #

    def create_process_table(self, pid: int) -> ProcessTable:
        """Register a process with segment 0 and empty segments 1..n-1."""
        log.warning("Process created PID: %d", pid)
        segments = [self.segment_zero]
        segments.extend(
            self.new_segment(segment_id, -1, 0)
            for segment_id in range(1, self.config.segment_count)
        )
        table = ProcessTable(pid, segments)
        self.processes.append(table)
        return table

    def create_segment(self, pid: int, segment_id: int, size: int) -> CreationResult:
        """Place segment ``segment_id`` of ``pid`` in a free hole."""
        hole = self.find_free_hole(size)
        if hole is None:
            if self.free_space() >= size:
                log.debug("Compaction needed")
                return CreationResult(MemoryReply.COMPACTACION)
            log.debug("Not enough space in memory")
            return CreationResult(MemoryReply.OUT_OF_MEMORY)

        segment = self.find_segment(pid, segment_id)
        segment.base = hole.base
        segment.size = size
        log.warning(
            "PID: %d - Crear Segmento: %d - Base: %d - Tamanio: %d",
            pid, segment.id, segment.base, segment.size,
        )
        hole.base += size
        hole.size -= size
        if hole.size == 0:
            log.debug("Hole removed")
            _discard(self.holes, hole)
        return CreationResult(MemoryReply.CREACION, segment.base)

    def delete_segment(self, pid: int, segment_id: int) -> ProcessTable:
        """Free a segment's space and mark it empty; return the process table."""
        table = self.find_process(pid)
        segment = find_segment_by_id(table.segments, segment_id)
        if segment is None:
            raise MemoryManagerError(f"process {pid} has no segment {segment_id}")
        if segment.size > 0:
            self.release(segment.base, segment.size)
        log.warning(
            "PID: %d - Eliminar Segmento: %d - Base: %d - Tamanio: %d",
            pid, segment.id, segment.base, segment.size,
        )
        segment.base = -1
        segment.size = 0
        return table

    def move_segments(self) -> Optional[Segment]:
        """Pack non-empty segments one after another; return the last one."""
        live = [s for s in self.segments if s.size != 0]
        contents = {
            id(s): bytes(self.memory[s.base:s.base + s.size]) for s in live
        }
        previous: Optional[Segment] = None
        for segment in live:
            if segment.base != 0:
                segment.base = previous.base + previous.size if previous else 0
            previous = segment
        for segment in live:
            self.memory[segment.base:segment.base + segment.size] = contents[id(segment)]
        return previous

    def compact(self) -> list[ProcessTable]:
        """Compact memory into one trailing hole; return the process tables."""
        log.warning("Compaction requested")
        last = self.move_segments()
        self.holes.clear()
        base = last.base + last.size if last is not None else 0
        if base < self.config.memory_size:
            self.add_hole(base, self.config.memory_size - base)
        for line in self.compaction_summary():
            log.warning(line)
        return self.processes

    def free_process(self, pid: int) -> None:
        """Forget a process and every segment it owns except segment 0."""
        log.warning("Process removed PID: %d", pid)
        table = self.find_process(pid)
        _discard(table.segments, self.segment_zero)
        for segment in table.segments:
            _discard(self.segments, segment)
        _discard(self.processes, table)
        table.segments.clear()

    def free_space(self) -> int:
        """Memory not taken by any segment."""
        remaining = self.config.memory_size - sum(s.size for s in self.segments)
        log.debug("Free space in memory: %d", remaining)
        return remaining

    # ------------------------------ user space ------------------------------ #

    def _check_range(self, address: int, length: int) -> None:
        if length < 0 or address < 0 or address + length > len(self.memory):
            raise MemoryManagerError(
                f"access of {length} bytes at {address} is outside memory"
            )

    def read(self, address: int, length: int) -> bytes:
        self._check_range(address, length)
        return bytes(self.memory[address:address + length])

    def write(self, address: int, data: bytes) -> None:
        data = bytes(data)
        self._check_range(address, len(data))
        self.memory[address:address + len(data)] = data

    def compaction_summary(self) -> list[str]:
        """One line per non-empty segment of every process."""
        return [
            f"PID: {table.pid} - Segmento: {s.id} - Base: {s.base} - Tamanio: {s.size}"
            for table in self.processes
            for s in table.segments
            if s.size != 0
        ]