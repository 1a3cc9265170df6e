from typing import Dict

# Machine geometry
REG_COUNT = 16      # general purpose registers, 8 bits each
DMEM_SIZE = 16      # data memory cells, 8 bits each
IMEM_SIZE = 16      # instruction memory cells, 16 bits each

def mask4(x: int) -> int:
    return x & 0xF

def mask8(x: int) -> int:
    return x & 0xFF

def mask16(x: int) -> int:
    return x & 0xFFFF


class Instruction:
    opcodes = {
        0x0: 'ADD',
        0x1: 'SUB',
        0x2: 'LOAD',
    }
    def __init__(self, opcode, rd=0, rs1=0, rs2imm=0):
        # if opcode is in string format, convert to int
        if isinstance(opcode, str):
            self.opcode = Instruction.opcode_to_int(opcode)
        else:
            self.opcode = mask4(opcode)
        self.rd = mask4(rd)
        self.rs1 = mask4(rs1)
        self.rs2imm = mask4(rs2imm)

    def __repr__(self):
        return (f"Instruction(opcode={self.opcode}, rd={self.rd}, "
                f"rs1={self.rs1}, rs2imm={self.rs2imm})")

    def __str__(self):
        name = self.opcode_to_string()
        if name == 'LOAD':
            return f"load r{self.rd}, [{self.rs2imm}]"
        if name in ('ADD', 'SUB'):
            return f"{name.lower()} r{self.rd}, r{self.rs1}, r{self.rs2imm}"
        return f".word 0x{self.instruction_to_binary():04x}"

    def opcode_to_string(self):
        # lookup opcode name from value
        return Instruction.opcodes.get(self.opcode, 'NOP')

    @staticmethod
    def opcode_to_int(opcode_str):
        """Mnemonic to opcode value. Unknown mnemonics give 0xF, which the
        pipeline treats as a no-op."""
        return {v: k for k, v in Instruction.opcodes.items()}.get(opcode_str.upper(), 0xF)

    @staticmethod
    def binary_to_instruction(instruction_int):
        word = mask16(instruction_int)
        return Instruction((word >> 12) & 0xF,   # opcode [15:12]
                           (word >> 8) & 0xF,    # rd [11:8]
                           (word >> 4) & 0xF,    # rs1 [7:4]
                           word & 0xF)           # rs2imm [3:0]

    def instruction_to_binary(self):
        return (self.opcode << 12) | (self.rd << 8) | (self.rs1 << 4) | self.rs2imm


def process_mem_file(file_path) -> Dict[int, int]:
    """
    Load .mem files like:
      0 0000001100010010
      1 0001010000100001
    Returns {address: value}. Blank and malformed lines are skipped.
    """
    memory = {}

    with open(file_path, 'r') as f:
        for line in f:
            # Skip empty lines
            if not line.strip():
                continue

            # Split the line into memory location and value
            parts = line.strip().split()
            if len(parts) < 2:
                print(f"Skipping malformed line: {line.strip()}")
                continue

            mem_loc, value_bits = parts[0], parts[1]
            try:
                memory[int(mem_loc, 16)] = int(value_bits, 2)
            except ValueError:
                print(f"Skipping invalid value at location {mem_loc}")

    return memory

def write_mem_file(file_path, mem: Dict[int, int], width: int = 8):
    """Write {address: value} in the same format process_mem_file reads."""
    with open(file_path, 'w') as f:
        for addr in sorted(mem):
            value = mem[addr] & ((1 << width) - 1)
            f.write(f"{addr:X} {value:0{width}b}\n")
