#!/usr/bin/env python3

from typing import List

from process_mem import Instruction, IMEM_SIZE, mask16

# maps 'r0', 'r1', etc., to their integer values
REGISTERS = {f'r{i}': i for i in range(16)}

# simple one pass assembler, there are no labels since the pc only counts up.
# add rd, rs1, rs2 | sub rd, rs1, rs2 | load rd, addr | nop | .word value

def _reg(name: str, line_num: int) -> int:
    if name not in REGISTERS:
        raise ValueError(f"line {line_num}: bad register '{name}'")
    return REGISTERS[name]

def _addr(text: str, line_num: int) -> int:
    text = text.strip('[]')
    try:
        addr = int(text, 0)
    except ValueError:
        raise ValueError(f"line {line_num}: bad address '{text}'")
    if not 0 <= addr < 16:
        raise ValueError(f"line {line_num}: address {addr} does not fit in 4 bits")
    return addr

def assemble(source_lines: List[str]) -> List[int]:
    machine_code: List[int] = []

    for line_num, line in enumerate(source_lines, 1):
        line = line.split('//')[0].split('#')[0].strip().lower()
        if not line:
            continue

        parts = line.replace(',', ' ').split()
        mnemonic, operands = parts[0], parts[1:]

        if mnemonic == '.word':
            if len(operands) != 1:
                raise ValueError(f"line {line_num}: .word takes one value")
            try:
                word = mask16(int(operands[0], 0))
            except ValueError:
                raise ValueError(f"line {line_num}: bad value '{operands[0]}'")
        elif mnemonic == 'nop':
            if operands:
                raise ValueError(f"line {line_num}: nop takes no operands")
            # any opcode outside add/sub/load is a no-op
            word = Instruction(0xF).instruction_to_binary()
        elif mnemonic in ('add', 'sub'):
            if len(operands) != 3:
                raise ValueError(f"line {line_num}: {mnemonic} takes rd, rs1, rs2")
            rd, rs1, rs2 = (_reg(op, line_num) for op in operands)
            word = Instruction(mnemonic, rd, rs1, rs2).instruction_to_binary()
        elif mnemonic == 'load':
            if len(operands) != 2:
                raise ValueError(f"line {line_num}: load takes rd, addr")
            rd = _reg(operands[0], line_num)
            addr = _addr(operands[1], line_num)
            word = Instruction('LOAD', rd, 0, addr).instruction_to_binary()
        else:
            raise ValueError(f"line {line_num}: unknown mnemonic '{mnemonic}'")

        machine_code.append(word)

    if len(machine_code) > IMEM_SIZE:
        raise ValueError(f"program has {len(machine_code)} words, instruction memory holds {IMEM_SIZE}")

    return machine_code
