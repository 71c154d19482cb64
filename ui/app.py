"""Streamlit chat UI for AutoFlow."""

import requests
import streamlit as st

# Configuration
API_URL = "http://localhost:8000"

st.set_page_config(
    page_title="AutoFlow",
    page_icon="🛠️",
    layout="wide",
)

st.title("🛠️ AutoFlow")
st.markdown("Describe a change; AutoFlow scopes it, writes it, tests it and opens a pull request.")

STATUS_ICONS = {
    "running": "🔵",
    "paused": "🟡",
    "completed": "🟢",
    "failed": "🔴",
}


def check_api_health():
    """Check if the API is healthy."""
    try:
        response = requests.get(f"{API_URL}/health", timeout=5)
        return response.status_code == 200, response.json()
    except requests.RequestException as e:
        return False, {"error": str(e)}


def start_workflow(requirement: str, repo_ref: str, base_branch: str, logs: str):
    """Call the start endpoint."""
    try:
        response = requests.post(
            f"{API_URL}/workflows",
            json={
                "requirement": requirement,
                "repo_ref": repo_ref,
                "base_branch": base_branch or None,
                "logs": logs or None,
            },
            timeout=1800,
        )
        return response.json()
    except requests.RequestException as e:
        return {"success": False, "error": str(e)}


def resume_workflow(conversation_id: str, reply: str):
    """Call the resume endpoint."""
    try:
        response = requests.post(
            f"{API_URL}/workflows/{conversation_id}/resume",
            json={"reply": reply},
            timeout=1800,
        )
        if response.status_code == 404:
            return {"success": False, "error": "Conversation not found"}
        return response.json()
    except requests.RequestException as e:
        return {"success": False, "error": str(e)}


def handle_result(result: dict):
    if result.get("success"):
        st.session_state["workflow"] = result["workflow"]
    else:
        st.error(f"Request failed: {result.get('error')}")


# Sidebar - API Status
with st.sidebar:
    st.header("System Status")

    healthy, health_data = check_api_health()

    if healthy:
        st.success("API Connected")
        st.metric(
            "Pipeline",
            "Loaded" if health_data.get("pipeline_loaded") else "Not loaded",
        )
        st.caption(f"LLM: {health_data.get('llm_provider', 'unknown')}")
        st.caption(f"Version: {health_data.get('version', 'unknown')}")
    else:
        st.error("API Not Available")
        st.caption("Start the API with: `make run-api`")
        st.caption(f"Error: {health_data.get('error', 'Unknown')}")

    st.divider()
    st.header("Repository")
    repo_ref = st.text_input("Repository", placeholder="owner/name or clone URL")
    base_branch = st.text_input("Base branch", value="main")
    logs = st.text_area("Error logs (optional)", height=150)

    if st.button("New conversation"):
        st.session_state.pop("workflow", None)
        st.rerun()

workflow = st.session_state.get("workflow")

if workflow:
    status = workflow.get("status", "unknown")
    st.caption(
        f"{STATUS_ICONS.get(status, '⚪')} {status.upper()}"
        f" - stage: {workflow.get('current_stage') or 'n/a'}"
        f" - id: {workflow.get('conversation_id')}"
    )

    for message in workflow.get("messages", []):
        with st.chat_message(message.get("role", "assistant")):
            st.markdown(message.get("content", ""))

    if status == "failed":
        decision = workflow.get("last_decision") or {}
        st.error(decision.get("explanation", "The run failed."))

    if workflow.get("change_request_url"):
        st.success(f"Pull request: {workflow['change_request_url']}")

prompt = st.chat_input("Describe a change, ask about the code, or reply...", disabled=not healthy)

if prompt:
    if workflow and workflow.get("status") != "completed":
        with st.spinner("Continuing..."):
            handle_result(resume_workflow(workflow["conversation_id"], prompt))
        st.rerun()
    elif not repo_ref:
        st.warning("Please enter a repository in the sidebar")
    else:
        with st.spinner("Working on it..."):
            handle_result(start_workflow(prompt, repo_ref, base_branch, logs))
        st.rerun()

# Footer
st.divider()
st.caption("AutoFlow - Built with LangGraph, FastAPI, Streamlit, FAISS, and Claude/OpenAI")
