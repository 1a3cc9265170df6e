''' Description:
This Python program simulates a 4-stage pipelined processor with sixteen 8-bit
registers. It implements the pipeline stages: Instruction Fetch (IF), Instruction
Decode (ID), Execute (EX) and Write-Back (WB), without hazard detection or forwarding.

Sections Overview:
1. Processor Architecture State Initialization:
   Declares the program counter (PC), register file (REGS), instruction memory
   (IMEM), data memory (DMEM) and the IF_ID, ID_EX, EX_WB pipeline registers.

2. Pipeline Stage Implementations:  opcode (ADD, SUB, LOAD)
   - fetch_instruction(): Fetches IMEM[PC] into IF_ID, or clears it on reset.
   - decode_instruction(): Splits the word and reads the source registers.
   - execute_instruction(): Performs the ALU operation or the data memory read.
   - write_back(): Commits the result to the register file.

3. step / run functions:
   One clock edge evaluates every stage against the previous edge's pipeline
   registers, so all stages advance together.

4. Demo Program:
   ADD, SUB and LOAD with a preloaded register file and data memory.

Usage:
> python pipeline4.py [program.mem | program.s] [-r regs.mem] [-d data.mem] [-c cycles] [-v] [-o out.mem]'''

import sys
from typing import Dict, List, Any

from assembler import assemble
from process_mem import (Instruction, REG_COUNT, DMEM_SIZE, IMEM_SIZE,
                         mask4, mask8, mask16, process_mem_file, write_mem_file)

DEBUG = False
def printg(msg: str):
    if DEBUG:
        print(msg)

WRITEBACK_OPCODES = (Instruction.opcode_to_int("ADD"),
                     Instruction.opcode_to_int("SUB"),
                     Instruction.opcode_to_int("LOAD"))

# Zeroed pipeline registers. The all-zero word is "add r0, r0, r0".
def empty_IF_ID() -> Dict[str, int]:
    return {"instr": 0}

def empty_ID_EX() -> Dict[str, int]:
    return {"instr": 0, "opcode": 0, "rd": 0, "rs1": 0, "rs2imm": 0, "op1": 0, "op2": 0}

def empty_EX_WB() -> Dict[str, int]:
    return {"opcode": 0, "rd": 0, "result": 0}


# Processor Architecture State initilization (Registers, PC, and Memory)
class PipelineCPU:
    def __init__(self, imem=None, regs=None, dmem=None, record=False):
        self.PC = 0                          # 4-bit Program Counter
        self.IMEM: List[int] = [0] * IMEM_SIZE   # 16-bit instruction words
        self.REGS: List[int] = [0] * REG_COUNT   # 8-bit registers
        self.DMEM: List[int] = [0] * DMEM_SIZE   # 8-bit data cells
        if imem:
            self.load_program(imem)
        if regs:
            self.load_registers(regs)
        if dmem:
            self.load_data(dmem)
        # Pipeline registers
        self.IF_ID = empty_IF_ID()
        self.ID_EX = empty_ID_EX()
        self.EX_WB = empty_EX_WB()
        # Snapshots of previous cycle pipeline registers
        # for true single cycle simulation
        self.prevIF_ID = self.IF_ID.copy()
        self.prevID_EX = self.ID_EX.copy()
        self.prevEX_WB = self.EX_WB.copy()
        self.perf_counters = {
            "cycles": 0,
            "retired": 0,
            "instruction_mix": {
                "ADD": 0,
                "SUB": 0,
                "LOAD": 0,
                "NOP": 0,
            }
        }
        self.record = record
        self.history: List[Dict[str, Any]] = []

    @staticmethod
    def _cells(values, size, name):
        """(index, value) pairs that fit in a memory of `size` cells; the rest
        are reported and skipped."""
        if not isinstance(values, dict):
            values = dict(enumerate(values))
        for addr, value in values.items():
            if not 0 <= addr < size:
                print(f"Skipping out of range location {addr:X} for {name}")
                continue
            yield addr, value

    def load_program(self, program):
        """Preload instruction memory from {addr: word} or a list of words."""
        for addr, word in self._cells(program, IMEM_SIZE, "IMEM"):
            if isinstance(word, Instruction):
                word = word.instruction_to_binary()
            self.IMEM[addr] = mask16(word)

    def load_registers(self, regs):
        for idx, value in self._cells(regs, REG_COUNT, "REGS"):
            self.REGS[idx] = mask8(value)

    def load_data(self, data):
        for addr, value in self._cells(data, DMEM_SIZE, "DMEM"):
            self.DMEM[addr] = mask8(value)

    def display_performance_counters(self):
        print("Performance Counters:")
        print(f"Total Cycles: {self.perf_counters['cycles']}")
        print(f"Total Register Writes: {self.perf_counters['retired']}")
        print("Instruction Mix (at write-back):")
        for instr, count in self.perf_counters['instruction_mix'].items():
            print(f"  {instr}: {count}")

    def display_state(self):
        print(f"PC: {self.PC}")
        for i in range(0, REG_COUNT, 4):
            print("  " + "  ".join(f"R{j:<2}= {self.REGS[j]:3}" for j in range(i, i + 4)))

    def snapshot(self) -> Dict[str, Any]:
        """Observable state at a clock edge boundary."""
        return {
            "cycle": self.perf_counters["cycles"],
            "PC": self.PC,
            "REGS": list(self.REGS),
            "IF_ID": self.IF_ID.copy(),
            "ID_EX": self.ID_EX.copy(),
            "EX_WB": self.EX_WB.copy(),
        }

    def fetch_instruction(self, reset=False):
        """IF: fetch IMEM[PC] into IF_ID; reset only touches PC and IF_ID"""
        if reset:
            self.PC = 0
            self.IF_ID = empty_IF_ID()
            printg("IF: reset, PC <- 0")
            return

        instruction = self.IMEM[self.PC]
        printg(f"IF: Fetched instruction {instruction:016b} from IMEM[{self.PC}]")
        self.IF_ID = {"instr": instruction}
        self.PC = mask4(self.PC + 1)

    def decode_instruction(self):
        """ID: split fields and read the source registers"""
        instruction = Instruction.binary_to_instruction(self.prevIF_ID["instr"])
        op1 = self.REGS[instruction.rs1]
        if instruction.opcode == Instruction.opcode_to_int("LOAD"):
            op2 = instruction.rs2imm   # data memory address, not a register
        else:
            op2 = self.REGS[instruction.rs2imm]
        printg(f"ID: {instruction}  op1: {op1}, op2: {op2}")
        self.ID_EX = {"instr": instruction.instruction_to_binary(),
                      "opcode": instruction.opcode, "rd": instruction.rd,
                      "rs1": instruction.rs1, "rs2imm": instruction.rs2imm,
                      "op1": op1, "op2": op2}

    def alu(self, op, a, b):
        """Simple ALU operations, 8-bit wraparound with no flags"""
        if op == Instruction.opcode_to_int("ADD"):
            return mask8(a + b)
        elif op == Instruction.opcode_to_int("SUB"):
            return mask8(a - b)
        return 0

    def execute_instruction(self):
        """EX: do ALU ops or the data memory read"""
        opcode = self.prevID_EX["opcode"]
        op1, op2 = self.prevID_EX["op1"], self.prevID_EX["op2"]
        if opcode == Instruction.opcode_to_int("LOAD"):
            result = self.DMEM[mask4(op2)]
            printg(f"EX: LOAD: read {result} from DMEM[{op2}]")
        else:
            result = self.alu(opcode, op1, op2)
            printg(f"EX: {Instruction(opcode).opcode_to_string()}: {op1}, {op2} => {result}")
        self.EX_WB = {"opcode": opcode, "rd": self.prevID_EX["rd"], "result": result}

    def write_back(self):
        """WB: write back to the register file"""
        opcode = self.prevEX_WB["opcode"]
        name = Instruction(opcode).opcode_to_string()
        self.perf_counters['instruction_mix'][name] += 1
        if opcode not in WRITEBACK_OPCODES:
            printg(f"WB: {name}: no write")
            return
        self.REGS[self.prevEX_WB["rd"]] = self.prevEX_WB["result"]
        self.perf_counters['retired'] += 1
        printg(f"WB: {name}: R{self.prevEX_WB['rd']} updated to {self.REGS[self.prevEX_WB['rd']]}")

    def step(self, reset=False):
        """One clock edge. Every stage reads the previous edge's pipeline
        registers. Write-back runs last so decode sees the register file as it
        was before this edge (no forwarding)."""
        printg(f"cycle {self.perf_counters['cycles']}  PC: {self.PC}  reset: {int(reset)}")
        self.prevIF_ID = self.IF_ID.copy()
        self.prevID_EX = self.ID_EX.copy()
        self.prevEX_WB = self.EX_WB.copy()

        self.fetch_instruction(reset)
        self.decode_instruction()
        self.execute_instruction()
        self.write_back()

        self.perf_counters['cycles'] += 1
        if self.record:
            self.history.append(self.snapshot())
        printg("")

    def run(self, max_cycles=IMEM_SIZE + 3, reset_cycles=1):
        """Hold reset for reset_cycles edges, then clock max_cycles edges."""
        for _ in range(reset_cycles):
            self.step(reset=True)
        for _ in range(max_cycles):
            self.step()
        return self.perf_counters['cycles']


def _flag_value(argv, flag):
    if flag in argv:
        index = argv.index(flag)
        if index + 1 < len(argv):   # make sure there is something after the flag
            return argv[index + 1]
    return None

def load_program_file(file_path) -> Dict[int, int]:
    if file_path.endswith(".mem"):
        return process_mem_file(file_path)
    with open(file_path, 'r') as f:
        return dict(enumerate(assemble(f.readlines())))

def main(argv=None):
    global DEBUG
    argv = sys.argv[1:] if argv is None else argv

    # check for -v flag for verbose debugging prints
    DEBUG = argv.count('-v') > 0

    # the first argument that is not a flag (or a flag value) is the program
    flag_values = {_flag_value(argv, f) for f in ('-r', '-d', '-c', '-o')}
    positional = [a for a in argv if not a.startswith('-') and a not in flag_values]

    try:
        regs = dmem = None
        if positional:
            program = load_program_file(positional[0])
        else:
            program = dict(enumerate(assemble([
                "add r3, r1, r2",     # R3 <- 10 + 20 = 30
                "sub r4, r2, r1",     # R4 <- 20 - 10 = 10
                "load r5, [5]",       # R5 <- DMEM[5] = 99
            ])))
            regs = {1: 10, 2: 20}
            dmem = {5: 99}
        # -r / -d replace the demo preloads
        if _flag_value(argv, '-r'):
            regs = process_mem_file(_flag_value(argv, '-r'))
        if _flag_value(argv, '-d'):
            dmem = process_mem_file(_flag_value(argv, '-d'))
        debug = not positional and not _flag_value(argv, '-r') and not _flag_value(argv, '-d')

        # run until the highest loaded address has been written back
        reach = max((a for a in program if 0 <= a < IMEM_SIZE), default=-1) + 1
        cycles = _flag_value(argv, '-c')
        cycles = int(cycles, 0) if cycles else reach + 3
    except (IOError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    # Initial architectural state
    print("Instruction Memory: ")
    for loc in sorted(program):
        print(f"IMEM[{loc:02}] = {Instruction.binary_to_instruction(program[loc])}")

    myCPU = PipelineCPU(program, regs, dmem)
    total_cycles = myCPU.run(max_cycles=cycles)

    print("\nFINAL STATE")
    myCPU.display_state()
    print(f"Total cycles executed: {total_cycles}")

    if debug:
        # Simple checks
        assert myCPU.REGS[3] == 30, "R3 should be 30 (ADD)"
        assert myCPU.REGS[4] == 10, "R4 should be 10 (SUB)"
        assert myCPU.REGS[5] == 99, "R5 should be 99 (LOAD from DMEM[5])"
        print(" All expected results match.")

    # write register file to -o file if specified
    output_mem_file = _flag_value(argv, '-o')
    if output_mem_file:
        write_mem_file(output_mem_file, dict(enumerate(myCPU.REGS)))
    myCPU.display_performance_counters()
    return 0

if __name__ == "__main__":
    sys.exit(main())
