from assembler import assemble
from pipeline4 import PipelineCPU, main
from process_mem import Instruction, process_mem_file


def make_cpu(source, regs=None, dmem=None, record=False):
    return PipelineCPU(assemble(source), regs, dmem, record=record)


def test_pc_counts_edges_mod_16():
    cpu = PipelineCPU()
    cpu.step(reset=True)
    assert cpu.PC == 0
    for n in range(1, 40):
        cpu.step()
        assert cpu.PC == n % 16


def test_add_sub_load_program():
    regs = {1: 10, 2: 20}
    cpu = make_cpu(["add r3, r1, r2", "sub r4, r2, r1", "load r5, [5]"],
                   regs, {5: 99})
    cpu.run(max_cycles=3 + 3)

    assert cpu.REGS[3] == 30
    assert cpu.REGS[4] == 10
    assert cpu.REGS[5] == 99
    for i in range(16):
        if i not in (3, 4, 5):
            assert cpu.REGS[i] == regs.get(i, 0)


def test_writeback_happens_three_edges_after_fetch():
    """Tests stage progression of a single instruction."""
    cpu = make_cpu(["add r3, r1, r2"], {1: 10, 2: 20})
    cpu.step(reset=True)

    # === FETCH ===
    cpu.step()
    assert cpu.IF_ID["instr"] == Instruction('ADD', 3, 1, 2).instruction_to_binary()
    assert cpu.REGS[3] == 0

    # === DECODE ===
    cpu.step()
    assert cpu.ID_EX["opcode"] == Instruction.opcode_to_int("ADD")
    assert (cpu.ID_EX["rd"], cpu.ID_EX["op1"], cpu.ID_EX["op2"]) == (3, 10, 20)
    assert cpu.REGS[3] == 0

    # === EXECUTE ===
    cpu.step()
    assert cpu.EX_WB == {"opcode": 0, "rd": 3, "result": 30}
    assert cpu.REGS[3] == 0

    # === WRITEBACK ===
    cpu.step()
    assert cpu.REGS[3] == 30


def test_decode_reads_stale_registers():
    cpu = make_cpu([
        "add r1, r1, r1",   # R1 <- 10, committed on edge 4
        "add r2, r1, r0",   # decoded on edge 3, sees R1 = 5
        "add r3, r1, r0",   # decoded on edge 4, same edge as the write, sees R1 = 5
        "add r4, r1, r0",   # decoded on edge 5, sees R1 = 10
    ], {1: 5})
    cpu.run(max_cycles=4 + 3)

    assert cpu.REGS[1] == 10
    assert cpu.REGS[2] == 5
    assert cpu.REGS[3] == 5
    assert cpu.REGS[4] == 10


def test_alu_wraps_to_8_bits():
    cpu = make_cpu(["add r3, r1, r2", "sub r4, r5, r6"],
                   {1: 200, 2: 100, 5: 10, 6: 20})
    cpu.run(max_cycles=2 + 3)
    assert cpu.REGS[3] == 44
    assert cpu.REGS[4] == 246


def test_unknown_opcode_does_not_write():
    cpu = make_cpu([".word 0xF312", "nop", "add r6, r1, r2"],
                   {1: 1, 2: 2, 3: 77}, record=True)
    cpu.run(max_cycles=3 + 3)

    assert cpu.REGS[3] == 77
    assert cpu.REGS[6] == 3
    assert [snap["PC"] for snap in cpu.history] == [0, 1, 2, 3, 4, 5, 6]
    # execute still ran and produced the default result
    assert {"opcode": 0xF, "rd": 3, "result": 0} in [snap["EX_WB"] for snap in cpu.history]
    assert cpu.perf_counters["instruction_mix"]["NOP"] >= 2


def test_reset_mid_stream_only_clears_pc_and_if_id():
    cpu = make_cpu(["add r3, r1, r2", "sub r4, r2, r1", "load r5, [5]"],
                   {1: 10, 2: 20}, {5: 99})
    cpu.step(reset=True)
    cpu.step()
    cpu.step()
    # add is in ID_EX, sub is in IF_ID
    assert cpu.ID_EX["opcode"] == Instruction.opcode_to_int("ADD")

    cpu.step(reset=True)
    assert cpu.PC == 0
    assert cpu.IF_ID == {"instr": 0}
    # the older instructions keep moving
    assert cpu.ID_EX["opcode"] == Instruction.opcode_to_int("SUB")
    assert cpu.EX_WB == {"opcode": 0, "rd": 3, "result": 30}

    cpu.step()
    assert cpu.REGS[3] == 30
    cpu.step()
    assert cpu.REGS[4] == 10
    assert cpu.REGS[5] == 0

    # the restarted program drains normally
    for _ in range(4):
        cpu.step()
    assert cpu.REGS[5] == 99


def test_zero_latch_writes_r0_on_first_edge():
    # the power-up EX_WB record is "add r0" with result 0
    cpu = PipelineCPU(regs={0: 7})
    cpu.step(reset=True)
    assert cpu.REGS[0] == 0


def test_load_uses_field_as_address_not_register():
    cpu = make_cpu(["load r1, 3"], {3: 9}, {3: 42, 9: 1})
    cpu.run(max_cycles=1 + 3)
    assert cpu.REGS[1] == 42


def test_values_are_masked_on_load():
    cpu = PipelineCPU(imem={1: 0x1FFFF}, regs={1: 300}, dmem=[256, 257])
    assert cpu.IMEM[1] == 0xFFFF
    assert cpu.REGS[1] == 44
    assert cpu.DMEM[:2] == [0, 1]


def test_out_of_range_addresses_are_skipped(capsys):
    cpu = PipelineCPU(imem={1: 0x0312, 0x11: 0x1421},
                      regs={2: 5, 18: 7}, dmem={3: 9, 16: 1})
    assert cpu.IMEM[1] == 0x0312
    assert cpu.REGS[2] == 5
    assert cpu.DMEM[0] == 0 and cpu.DMEM[3] == 9
    out = capsys.readouterr().out
    assert "Skipping out of range location 11 for IMEM" in out
    assert "for REGS" in out
    assert "for DMEM" in out


def test_writeback_commits_latched_result():
    cpu = PipelineCPU()
    cpu.EX_WB = {"opcode": Instruction.opcode_to_int("SUB"), "rd": 7, "result": 123}
    cpu.step()
    assert cpu.REGS[7] == 123


def test_performance_counters():
    cpu = make_cpu(["add r3, r1, r2", "nop", "load r5, [5]"], {1: 1, 2: 2})
    cpu.run(max_cycles=3 + 3)
    counters = cpu.perf_counters
    assert counters["cycles"] == 7
    assert counters["instruction_mix"]["LOAD"] == 1
    assert counters["instruction_mix"]["NOP"] == 1
    # everything else written back was an add, including the zeroed slots
    assert counters["instruction_mix"]["ADD"] == 5
    assert counters["retired"] == 6


def test_main_runs_files(tmp_path, capsys):
    program = tmp_path / "prog.s"
    program.write_text("add r3, r1, r2\nload r5, [5]\n")
    regs = tmp_path / "regs.mem"
    regs.write_text("1 00001010\n2 00010100\n")
    data = tmp_path / "data.mem"
    data.write_text("5 01100011\n")
    out = tmp_path / "out.mem"

    assert main([str(program), "-r", str(regs), "-d", str(data), "-o", str(out)]) == 0
    final = process_mem_file(str(out))
    assert final[3] == 30
    assert final[5] == 99
    assert "Performance Counters:" in capsys.readouterr().out


def test_main_runs_sparse_mem_program(tmp_path):
    program = tmp_path / "prog.mem"
    program.write_text("0 0000001100010010\n8 0010010100000101\n")
    regs = tmp_path / "regs.mem"
    regs.write_text("1 00001010\n2 00010100\n")
    data = tmp_path / "data.mem"
    data.write_text("5 01100011\n")
    out = tmp_path / "out.mem"

    assert main([str(program), "-r", str(regs), "-d", str(data), "-o", str(out)]) == 0
    final = process_mem_file(str(out))
    assert final[3] == 30
    # the word at address 8 is fetched and written back too
    assert final[5] == 99


def test_main_preload_files_replace_demo_preloads(tmp_path):
    regs = tmp_path / "regs.mem"
    regs.write_text("1 00000001\n")
    out = tmp_path / "out.mem"

    assert main(["-r", str(regs), "-o", str(out)]) == 0
    final = process_mem_file(str(out))
    assert final[1] == 1
    assert final[2] == 0
    assert final[3] == 1      # 1 + 0
    assert final[4] == 255    # 0 - 1
    assert final[5] == 99     # demo data memory is still used


def test_main_demo_program():
    assert main([]) == 0


def test_main_reports_bad_program(tmp_path, capsys):
    program = tmp_path / "bad.s"
    program.write_text("mul r1, r2, r3\n")
    assert main([str(program)]) == 1
    assert "unknown mnemonic" in capsys.readouterr().err
