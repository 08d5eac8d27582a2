import streamlit as st
import pandas as pd
import json
from backend import DataManager
from config import configure_logging, load_settings
from export import PRESETS, WEIGHT_KEYS, PRIORITY_LISTS
from fields import COLLECTIONS, detect_collection, split_list
from rules import RULE_TYPES, RULE_TYPE_INFO, RuleNotAcceptable
from validation import summarize

st.set_page_config(page_title="Data Alchemist Dashboard", layout="wide")
st.title("🧪 Data Alchemist - Resource Allocation Configurator")

# Instantiate DataManager (singleton in session state)
if "dm" not in st.session_state:
    settings = load_settings()
    configure_logging(settings.log_level)
    st.session_state.dm = DataManager(settings)

dm: DataManager = st.session_state.dm


def read_upload(uploaded_file) -> pd.DataFrame:
    if uploaded_file.name.lower().endswith((".xlsx", ".xls")):
        return pd.read_excel(uploaded_file)
    return pd.read_csv(uploaded_file)


with st.sidebar:
    st.header("1. Upload Data Files")
    uploads = st.file_uploader(
        "Upload clients, workers and tasks (CSV or XLSX)",
        type=["csv", "xlsx"], accept_multiple_files=True,
    )

    if st.button("Load Uploaded Files"):
        if not uploads:
            st.error("Please upload at least one file before loading.")
        else:
            for uploaded_file in uploads:
                collection = detect_collection(uploaded_file.name)
                df = read_upload(uploaded_file)
                dm.load_records(collection, df.to_dict(orient="records"))
                st.success(f"{uploaded_file.name} loaded as {collection} ({len(df)} rows)")
            dm.validate_all()

    for collection, mapping in dm.header_mappings.items():
        if mapping:
            st.caption(f"{collection} header corrections: {mapping}")

    st.markdown("---")
    st.header("2. Prioritization")
    preset = st.selectbox(
        "Preset", list(PRESETS),
        format_func=lambda key: PRESETS[key]["name"],
    )
    if st.button("Apply Preset"):
        dm.apply_preset(preset)
        st.success(f"Preset applied: {PRESETS[preset]['name']}")

    weights = {}
    for key in WEIGHT_KEYS:
        weights[key] = st.slider(key, 0, 100, int(dm.prioritization.weights[key]))
    if st.button("Set Weights"):
        dm.set_priorities(weights)
        st.success(f"Weights set (preset: {dm.prioritization.preset})")

    st.subheader("Priority Lists")
    skills = sorted({s for row in dm.workers for s in split_list(row.get("Skills"))}
                    | {s for row in dm.tasks for s in split_list(row.get("RequiredSkills"))})
    list_options = {
        "highPriorityClients": [str(row.get("ClientID")) for row in dm.clients],
        "criticalSkills": skills,
        "urgentTasks": [str(row.get("TaskID")) for row in dm.tasks],
        "preferredWorkers": [str(row.get("WorkerID")) for row in dm.workers],
    }
    selected = {}
    for list_name in PRIORITY_LISTS:
        current = dm.prioritization.priorities[list_name]
        options = list(dict.fromkeys(list_options[list_name] + current))
        selected[list_name] = st.multiselect(list_name, options, default=current)
    if st.button("Set Priority Lists"):
        for list_name, items in selected.items():
            current = dm.prioritization.priorities[list_name]
            for item in set(items) ^ set(current):
                dm.prioritization.toggle_priority(list_name, item)
        st.success("Priority lists updated")


# --- Main workspace ---
st.header("3. Data")
tabs = st.tabs([name.title() for name in COLLECTIONS])
for tab, collection in zip(tabs, COLLECTIONS):
    with tab:
        rows = getattr(dm, collection)
        if rows:
            st.dataframe(pd.DataFrame(rows), use_container_width=True)
        else:
            st.info(f"No {collection} loaded")

st.markdown("---")
st.header("4. Data Validation")
if st.button("Run Validation"):
    progress = st.progress(0)
    dm.validate_all(on_progress=lambda done, total, label: progress.progress(done / total, text=label))

if dm.findings:
    counts = summarize(dm.findings)
    cols = st.columns(4)
    cols[0].metric("Errors", counts["errors"])
    cols[1].metric("Warnings", counts["warnings"])
    cols[2].metric("Critical", counts["critical"])
    cols[3].metric("Status", "Passed" if counts["passed"] else "Needs Review")
    for finding in dm.findings:
        line = f"**[{finding.severity}] {finding.category}**: {finding.message}"
        if finding.kind == "error":
            st.error(line)
        elif finding.kind == "warning":
            st.warning(line)
        else:
            st.success(line)
        if finding.suggestion:
            st.caption(f"💡 {finding.suggestion}")

st.markdown("---")
st.header("5. Natural Language Search")
search_collection = st.selectbox("Collection", COLLECTIONS, key="search_collection")
nl_query = st.text_input("Enter a search query (e.g. 'workers available in phases 1, 2 and 3')")

if st.button("Search"):
    if not nl_query.strip():
        st.warning("Please enter a query")
    else:
        result = dm.search(nl_query, search_collection)
        with st.expander("Parsed conditions"):
            st.json([c.to_dict() for c in result.conditions])
        if result.records:
            st.write(f"Found {len(result.records)} matching rows:")
            st.dataframe(pd.DataFrame(result.records), use_container_width=True)
        else:
            st.info("No results found")

st.markdown("---")
st.header("6. Business Rules")
tab_ai, tab_builder, tab_list = st.tabs(["From Plain English", "Rule Builder", "Rules"])

with tab_ai:
    rule_input = st.text_area(
        "Describe your rule:",
        placeholder="e.g., Tasks T001 and T003 must run together in the same phase",
    )
    if st.button("Convert Rule"):
        st.session_state.parsed_rule = dm.convert_rule(rule_input) if rule_input.strip() else None
        if st.session_state.parsed_rule is None:
            st.error("Could not understand rule")

    parsed = st.session_state.get("parsed_rule")
    if parsed is not None:
        st.subheader(parsed.name)
        st.write(f"Type: `{parsed.type}`, confidence {parsed.confidence:.0%}")
        st.json(parsed.parameters)
        for warning in parsed.warnings:
            st.warning(warning)
        for suggestion in parsed.suggestions:
            st.info(suggestion)

        override = False
        if not parsed.is_acceptable:
            override = st.checkbox("I have reviewed the warnings and want to add this rule anyway")
        if st.button("Add Rule"):
            try:
                rule = dm.rules.promote(parsed, override=override)
                st.success(f"Rule added: {rule.name}")
                st.session_state.parsed_rule = None
            except RuleNotAcceptable as e:
                st.error(str(e))

with tab_builder:
    rule_type = st.selectbox("Rule type", RULE_TYPES, format_func=lambda t: RULE_TYPE_INFO[t][0])
    st.caption(RULE_TYPE_INFO[rule_type][1])
    name = st.text_input("Name")
    parameters_text = st.text_area("Parameters (JSON)", value="{}")
    priority = st.number_input("Priority", min_value=1, max_value=10, value=1)
    if st.button("Create Rule"):
        try:
            rule = dm.create_rule(rule_type, json.loads(parameters_text), name=name or None, priority=int(priority))
            st.success(f"Rule created: {rule.name}")
        except ValueError as e:
            # json.JSONDecodeError is a ValueError
            st.error(str(e))

with tab_list:
    if not dm.rules.rules:
        st.info("No rules yet")
    for rule in list(dm.rules.rules):
        cols = st.columns([6, 1, 1])
        cols[0].write(f"**{rule.name}** ({rule.type}, priority {rule.priority})")
        if cols[1].button("Disable" if rule.enabled else "Enable", key=f"toggle_{rule.id}"):
            dm.toggle_rule(rule.id)
            st.rerun()
        if cols[2].button("Delete", key=f"delete_{rule.id}"):
            dm.delete_rule(rule.id)
            st.rerun()

st.markdown("---")
st.header("7. Export Data & Configuration")

for list_name in PRIORITY_LISTS:
    items = dm.prioritization.priorities[list_name]
    if items:
        st.caption(f"{list_name}: {', '.join(items)}")

if st.button("Export All to CSV/JSON"):
    outdir = dm.export_all()
    st.success(f"Exported data and configuration to folder: {outdir}")

if dm.has_data():
    payloads = dm.export_payloads()
    cols = st.columns(len(payloads))
    for col, (key, payload) in zip(cols, payloads.items()):
        col.download_button(
            f"Download {key}", json.dumps(payload, indent=2),
            file_name=f"{key}.json", mime="application/json",
        )
