import streamlit as st

from robTomas.cdb import peek
from robTomas.config import PREDICTOR_KINDS, current_config
from robTomas.memory import dump
from robTomas.processor import Processor, snapshot_tables
from robTomas.programs import PRESET_PROGRAMS, get_preset_keys

st.set_page_config(page_title="Tomasulo + ROB Simulator", layout="wide")
st.title("Tomasulo Algorithm Simulator with Reorder Buffer and Speculation")


# --- Session State Initialization ---
def get_default_fu_config():
    return {
        "ADD":   {"rs_count": 2},
        "MUL":   {"rs_count": 2},
        "LOAD":  {"rs_count": 2},
        "STORE": {"rs_count": 1},
    }


if 'processor' not in st.session_state:
    st.session_state.processor = None
    st.session_state.sim_started = False
    st.session_state.sim_finished = False

# --- Sidebar: Hardware Config ---
st.sidebar.header("Hardware Configuration")
fu_config = {}
for fu, vals in get_default_fu_config().items():
    rs = st.sidebar.number_input(f"{fu} RS Count", min_value=1, value=vals['rs_count'], key=f"rs_{fu}")
    fu_config[fu] = {"rs_count": int(rs)}
rob_size = st.sidebar.number_input("ROB Size", min_value=2, value=8, key="rob_size")
predictor = st.sidebar.selectbox("Branch Predictor", PREDICTOR_KINDS, index=PREDICTOR_KINDS.index("2-bit"))
speculation = st.sidebar.checkbox("Speculative issue past branches", value=True)
alignment = st.sidebar.checkbox("Enforce word alignment", value=True)

# --- Program Selection ---
st.header("1. Choose a Program")
preset_key = st.selectbox("Preset", get_preset_keys(), format_func=lambda key: PRESET_PROGRAMS[key].name)
preset = PRESET_PROGRAMS[preset_key]
st.caption(preset.description)
st.code("\n".join(f"{instr.pc:>2}: {instr}" for instr in preset.instructions))

# --- Simulation Controls ---
st.header("2. Simulation Controls")
col1, col2, col3, col4, col5 = st.columns(5)
if col1.button("Initialize/Reset"):
    config = current_config(fu_config=fu_config, rob_size=int(rob_size), branch_predictor=predictor,
                            speculation_enabled=speculation, enforce_alignment=alignment)
    st.session_state.processor = Processor(config=config)
    st.session_state.processor.load_program(preset.instructions, initial_memory_data=preset.memory,
                                            initial_register_data=preset.registers)
    st.session_state.sim_started = True
    st.session_state.sim_finished = False
    st.success("Simulation initialized.")

processor = st.session_state.processor

try:
    if col2.button("Step") and st.session_state.sim_started and not st.session_state.sim_finished:
        processor.run_cycle()
        st.session_state.sim_finished = processor.is_simulation_complete()

    if col3.button("Step Back") and st.session_state.sim_started and processor.history:
        processor.step_back()
        st.session_state.sim_finished = False

    if col4.button("Run to Completion") and st.session_state.sim_started and not st.session_state.sim_finished:
        processor.run_simulation(max_cycles=1000)
        st.session_state.sim_finished = processor.is_simulation_complete()
except ValueError as e:
    st.error(f"Simulation fault: {e}")
    st.session_state.sim_finished = True

if col5.button("Reset State"):
    st.session_state.processor = None
    st.session_state.sim_started = False
    st.session_state.sim_finished = False
    processor = None

# --- Display State ---
if processor and st.session_state.sim_started:
    state = processor.state
    tables = snapshot_tables(state)
    metrics = processor.metrics()

    st.subheader(f"Cycle: {state.cycle}  |  PC: {state.pc}  |  ROB head {state.rob_head}, tail {state.rob_tail}")
    m1, m2, m3, m4, m5, m6 = st.columns(6)
    m1.metric("Committed", metrics.instructions_committed)
    m2.metric("IPC", f"{metrics.ipc:.2f}")
    m3.metric("Stall Cycles", metrics.stall_cycles)
    m4.metric("Flushes", metrics.flush_count)
    m5.metric("Mispredictions", metrics.misprediction_count)
    m6.metric("Branch Accuracy", f"{metrics.branch_accuracy:.0%}")
    st.caption(
        f"Issue stalls: {metrics.issue_stalls} · Data hazard stalls: {metrics.data_hazard_stalls} · "
        f"Structural hazard stalls: {metrics.structural_hazard_stalls}"
    )

    st.write("### Instructions")
    st.dataframe(tables["instructions"])

    left, right = st.columns(2)
    with left:
        st.write("### Reservation Stations")
        st.dataframe(tables["reservation_stations"])
        st.write("### Functional Units")
        st.dataframe(tables["functional_units"])
        st.write("### Common Data Bus")
        head = peek(state)
        st.write(f"Next broadcast: ROB{head.rob_index} = {head.value}" if head else "Queue empty")
        st.dataframe(tables["cdb_queue"])
    with right:
        st.write("### Reorder Buffer")
        st.dataframe(tables["rob"])
        st.write("### Branch Checkpoints")
        st.dataframe(tables["checkpoints"])
        st.write("### Predictor Counters")
        st.dataframe(tables["predictor"])

    st.write("### Register File")
    st.dataframe(tables["registers"])

    st.write("### Memory (addresses 0-39)")
    st.dataframe([{"Address": addr, "Value": value}
                  for addr, value in dump(state.memory, 0, 10, state.config.word_size_bytes)])

    if st.session_state.sim_finished:
        st.success("Simulation finished.")
