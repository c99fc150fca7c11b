"""Core data types shared by the memory server and its clients."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Optional, Sequence


class Instruction(IntEnum):
    """Instructions a process can execute."""

    SET = 0
    MOV_IN = 1
    MOV_OUT = 2
    IO = 3
    F_OPEN = 4
    F_CLOSE = 5
    F_SEEK = 6
    F_READ = 7
    F_WRITE = 8
    F_TRUNCATE = 9
    WAIT = 10
    SIGNAL = 11
    CREATE_SEGMENT = 12
    DELETE_SEGMENT = 13
    YIELD = 14
    EXIT = 15
    SEG_FAULT = 16  # not an instruction, used as an eviction reason


class Register(IntEnum):
    """CPU register names."""

    AX = 0
    BX = 1
    CX = 2
    DX = 3
    EAX = 4
    EBX = 5
    ECX = 6
    EDX = 7
    RAX = 8
    RBX = 9
    RCX = 10
    RDX = 11


class MemoryReply(IntEnum):
    """Replies the memory sends to a segment creation request."""

    CREACION = 0
    COMPACTACION = 1
    OUT_OF_MEMORY = 2


_INSTRUCTION_NAMES = {
    ("I/O" if ins is Instruction.IO else ins.name): ins
    for ins in Instruction
    if ins is not Instruction.SEG_FAULT
}


def parse_instruction(name: str) -> Instruction:
    """Return the instruction whose mnemonic is ``name``."""
    try:
        return _INSTRUCTION_NAMES[name]
    except KeyError:
        raise ValueError(f"unknown instruction: {name!r}") from None


def parse_register(name: str | Register) -> Register:
    """Return the register called ``name``."""
    if isinstance(name, Register):
        return name
    try:
        return Register[name]
    except KeyError:
        raise ValueError(f"unknown register: {name!r}") from None


def register_length(name: str | Register) -> int:
    """Width in bytes of the named register."""
    register = parse_register(name)
    if register <= Register.DX:
        return 4
    if register <= Register.EDX:
        return 8
    return 16


@dataclass
class Segment:
    """A memory segment: identifier, base address and size."""

    id: int
    base: int
    size: int

    def copy(self) -> Segment:
        return Segment(self.id, self.base, self.size)


@dataclass
class Hole:
    """A free block of memory."""

    base: int
    size: int

    def end(self) -> int:
        """Address just past the hole."""
        return self.base + self.size


@dataclass
class ProcessTable:
    """The segment table of one process."""

    pid: int
    segments: list[Segment] = field(default_factory=list)


class CpuRegisters:
    """Fixed-width character registers of the CPU."""

    SIZE = sum(register_length(r) for r in Register)

    def __init__(self) -> None:
        self._data = {r: bytes(register_length(r)) for r in Register}

    def write(self, name: str | Register, value: str | bytes) -> None:
        """Store ``value`` truncated or zero-padded to the register width."""
        register = parse_register(name)
        width = register_length(register)
        raw = value.encode("utf-8") if isinstance(value, str) else bytes(value)
        raw = raw.split(b"\0", 1)[0][:width]
        self._data[register] = raw.ljust(width, b"\0")

    def read(self, name: str | Register) -> str:
        """Return the register's contents up to its first NUL byte."""
        raw = self._data[parse_register(name)]
        return raw.split(b"\0", 1)[0].decode("utf-8", errors="replace")

    def copy_from(self, other: CpuRegisters) -> None:
        """Copy every register of ``other`` into this set."""
        for register in Register:
            self.write(register, other._data[register])

    def to_bytes(self) -> bytes:
        """Registers laid out in declaration order."""
        return b"".join(self._data[r] for r in Register)

    @classmethod
    def from_bytes(cls, data: bytes) -> CpuRegisters:
        if len(data) != cls.SIZE:
            raise ValueError(
                f"register block must be {cls.SIZE} bytes, got {len(data)}"
            )
        registers = cls()
        offset = 0
        for register in Register:
            width = register_length(register)
            registers._data[register] = bytes(data[offset:offset + width])
            offset += width
        return registers

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CpuRegisters):
            return NotImplemented
        return self._data == other._data

    def __repr__(self) -> str:
        values = ", ".join(f"{r.name}={self.read(r)!r}" for r in Register)
        return f"CpuRegisters({values})"


@dataclass
class Process:
    """Process control block."""

    pid: int
    pc: int = 0
    registers: CpuRegisters = field(default_factory=CpuRegisters)
    instructions: list[str] = field(default_factory=list)
    held_resources: list[str] = field(default_factory=list)
    segments: list[Segment] = field(default_factory=list)
    estimated_burst: float = 0.0
    ready_arrival: float = 0.0
    running_arrival: float = 0.0
    running_exit: float = 0.0
    response_ratio: float = 0.0
    open_files: list = field(default_factory=list)
    console_socket: Optional[int] = None


@dataclass
class ExecutionContext:
    """The part of a process the CPU needs to run it."""

    pid: int = 0
    pc: int = 0
    registers: CpuRegisters = field(default_factory=CpuRegisters)
    instructions: list[str] = field(default_factory=list)
    segments: list[Segment] = field(default_factory=list)

    @classmethod
    def from_process(cls, process: Process) -> ExecutionContext:
        """Build a context holding independent copies of the process data."""
        registers = CpuRegisters()
        registers.copy_from(process.registers)
        return cls(
            pid=process.pid,
            pc=process.pc,
            registers=registers,
            instructions=list(process.instructions),
            segments=[s.copy() for s in process.segments],
        )

    def __deepcopy__(self, memo):
        registers = CpuRegisters()
        registers.copy_from(self.registers)
        return ExecutionContext(
            self.pid,
            self.pc,
            registers,
            copy.copy(self.instructions),
            [s.copy() for s in self.segments],
        )


def strings_size(strings: Iterable[str]) -> int:
    """Bytes taken by the strings with their terminating NULs."""
    return sum(len(s.encode("utf-8")) + 1 for s in strings)


def join_items(items: Iterable[str]) -> str:
    return ", ".join(items)


def join_pids(pids: Iterable[int]) -> str:
    return ", ".join(str(pid) for pid in pids)


def find_segment_by_id(
    segments: Iterable[Segment], segment_id: int
) -> Optional[Segment]:
    """First segment with the given id, or None."""
    return next((s for s in segments if s.id == segment_id), None)


def format_holes(holes: Iterable[Hole]) -> str:
    return "\n".join(
        f"Hole base: {h.base}\nHole size: {h.size}\nHole end: {h.end()}"
        for h in holes
    )


def format_segments(segments: Iterable[Segment]) -> str:
    return "\n".join(
        f"Segment id: {s.id}\nSegment base: {s.base}\nSegment size: {s.size}"
        for s in segments
    )


def format_processes(processes: Sequence[Process]) -> str:
    return "\n".join(f"PID: {p.pid}" for p in processes)