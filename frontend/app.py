import json
import os
from typing import Any, Dict, Iterator, List, Optional

import pandas as pd
import plotly.graph_objects as go
import requests
import streamlit as st
from dotenv import load_dotenv

load_dotenv()

BACKEND_URL = os.getenv("BACKEND_URL", "http://127.0.0.1:8000")

st.set_page_config(page_title="AI Chart Copilot", layout="wide")
st.title("📊 AI Chart Copilot")

st.write("Upload a CSV file, let the agents analyze it, pick a recommended chart and refine it in plain English.")


for key, default in (
    ("data", None),
    ("agent_results", None),
    ("analysis_summary", None),
    ("recommendations", []),
    ("chart_plan", None),
    ("highcharts_config", None),
    ("chat_history", []),
):
    if key not in st.session_state:
        st.session_state[key] = default


def stream_analysis(data: Dict[str, Any], user_message: str) -> Iterator[Dict[str, Any]]:
    resp = requests.post(
        f"{BACKEND_URL}/chat/analyze-and-chart",
        json={"data": data, "userMessage": user_message or None},
        stream=True,
        timeout=600,
    )
    if resp.status_code != 200:
        yield {"type": "error", "message": resp.text}
        return
    for line in resp.iter_lines(decode_unicode=True):
        if line and line.startswith("data: "):
            yield json.loads(line[len("data: "):])


def request_plan(selected_id: Optional[str] = None) -> None:
    resp = requests.post(
        f"{BACKEND_URL}/chart/plan",
        json={
            "data": st.session_state["data"],
            "agentResults": st.session_state["agent_results"],
            "selectedRecommendationId": selected_id,
        },
    )
    if resp.status_code == 200:
        payload = resp.json()
        st.session_state["chart_plan"] = payload.get("plan")
        st.session_state["recommendations"] = payload.get("recommendations", [])
        requests.post(f"{BACKEND_URL}/debug/chart-plan", json=payload.get("plan") or {})
    else:
        st.error(f"Chart plan error: {resp.text}")


def plan_figure(plan: Dict[str, Any]) -> go.Figure:
    rows: List[Dict[str, Any]] = plan["data"]["rows"]
    x_key = plan["xKey"]
    x_values = [row.get(x_key) for row in rows]
    chart_type = plan["chartType"]
    spec = plan.get("chartSpec") or {}

    fig = go.Figure()
    if chart_type == "pie" and plan["series"]:
        first = plan["series"][0]
        fig.add_trace(go.Pie(labels=x_values, values=[row.get(first["key"]) for row in rows], name=first.get("label")))
    for item in plan["series"] if chart_type != "pie" else []:
        y_values = [row.get(item["key"]) for row in rows]
        name = item.get("label") or item["key"]
        marker = {"color": item.get("color")}
        if chart_type == "bar":
            fig.add_trace(go.Bar(x=x_values, y=y_values, name=name, marker=marker))
        elif chart_type == "scatter":
            fig.add_trace(go.Scatter(x=x_values, y=y_values, name=name, mode="markers", marker=marker))
        else:
            fig.add_trace(
                go.Scatter(
                    x=x_values,
                    y=y_values,
                    name=name,
                    mode="lines+markers",
                    line={"color": item.get("color")},
                    fill="tozeroy" if chart_type == "area" else None,
                )
            )

    recommendation = plan.get("recommendation") or {}
    fig.update_layout(
        title=recommendation.get("chartTitle") or recommendation.get("businessQuestion"),
        barmode="stack" if spec.get("variant") == "stacked" else "group",
        plot_bgcolor="#FFFFFF",
    )
    return fig


uploaded_file = st.file_uploader("Upload CSV", type=["csv"])

if uploaded_file is not None and st.session_state["data"] is None:
    files = {"file": (uploaded_file.name, uploaded_file.getvalue(), "text/csv")}
    with st.spinner("Uploading and reading file..."):
        resp = requests.post(f"{BACKEND_URL}/upload_csv", files=files)

    if resp.status_code == 200:
        info = resp.json()
        st.session_state["data"] = {"columns": info["columns"], "rows": info["rows"]}
        st.success(f"File uploaded: {info['fileName']}")
        st.write(f"Rows: {info['rowCount']} | Columns: {info['columnCount']}")
    else:
        st.error(f"Error: {resp.text}")


data = st.session_state.get("data")

if data:
    st.dataframe(pd.DataFrame(data["rows"]).head(20), use_container_width=True)
    st.markdown("---")
    cols = st.columns(2)

    # LEFT: agent analysis + recommendation choice
    with cols[0]:
        st.subheader("🤖 Multi-agent Analysis")
        user_message = st.text_input("What should the chart show?", placeholder="e.g. Compare quarterly sales by product")

        if st.button("Analyze & Chart"):
            progress = st.empty()
            lines: List[str] = []
            for event in stream_analysis(data, user_message):
                event_type = event.get("type")
                if event_type == "agent-start":
                    lines.append(f"⏳ {event['agentName']} working...")
                elif event_type == "agent-complete":
                    lines.append(f"✅ {event['agentName']} done")
                elif event_type == "error":
                    lines.append(f"❌ {event.get('agentName') or 'Analysis'}: {event.get('message')}")
                elif event_type == "complete":
                    st.session_state["agent_results"] = {"agents": event["agents"]}
                    st.session_state["analysis_summary"] = event.get("summary")
                    if event.get("transformedData"):
                        st.session_state["data"] = event["transformedData"]
                    st.session_state["highcharts_config"] = None
                    st.session_state["chat_history"] = []
                progress.markdown("\n\n".join(lines))
            if st.session_state["agent_results"]:
                request_plan()

        summary = st.session_state.get("analysis_summary")
        if summary:
            for heading, points in summary.items():
                st.write(f"**{heading}**")
                for point in points:
                    st.write(f"- {point}")

        recommendations = st.session_state.get("recommendations") or []
        if recommendations:
            labels = {item["id"]: f"{item.get('chartTitle') or item['chartType']} ({item['chartType']})" for item in recommendations}
            current = (st.session_state.get("chart_plan") or {}).get("recommendationId")
            ids = list(labels.keys())
            selected = st.selectbox(
                "Recommendation",
                ids,
                index=ids.index(current) if current in ids else 0,
                format_func=lambda rec_id: labels[rec_id],
            )
            if selected != current:
                request_plan(selected)

    # RIGHT: rendered plan + generated config + chat edits
    with cols[1]:
        st.subheader("📈 Chart")
        plan = st.session_state.get("chart_plan")
        if plan:
            st.plotly_chart(plan_figure(plan), use_container_width=True)

            if plan.get("recommendation") and st.button("Generate chart configuration"):
                spec = plan.get("chartSpec") or {}
                prep_resp = requests.post(
                    f"{BACKEND_URL}/chart/prepare",
                    json={
                        "data": st.session_state["data"],
                        "recommendation": plan["recommendation"],
                        "colorPalette": (spec.get("colors") or {}).get("primary"),
                    },
                )
                if prep_resp.status_code != 200:
                    st.error(f"Prepare error: {prep_resp.text}")
                else:
                    with st.spinner("Generating chart configuration..."):
                        gen_resp = requests.post(
                            f"{BACKEND_URL}/chart/generate-highcharts",
                            json={
                                "recommendation": plan["recommendation"],
                                "preparedData": prep_resp.json(),
                                "chartSpec": plan.get("chartSpec"),
                            },
                        )
                    if gen_resp.status_code == 200:
                        st.session_state["highcharts_config"] = gen_resp.json()["highchartsConfig"]
                        st.session_state["chat_history"] = []
                    else:
                        st.error(f"Generation error: {gen_resp.text}")

        config = st.session_state.get("highcharts_config")
        if config:
            with st.expander("Chart configuration", expanded=False):
                st.json(config)

            for message in st.session_state["chat_history"]:
                with st.chat_message(message["role"]):
                    st.write(message["content"])

            edit_request = st.chat_input("Ask for a change, e.g. make the bars green")
            if edit_request:
                with st.spinner("Editing chart..."):
                    edit_resp = requests.post(
                        f"{BACKEND_URL}/chart/edit-highcharts",
                        json={
                            "currentConfig": config,
                            "userRequest": edit_request,
                            "chatHistory": st.session_state["chat_history"],
                        },
                    )
                st.session_state["chat_history"].append({"role": "user", "content": edit_request})
                if edit_resp.status_code == 200:
                    result = edit_resp.json()
                    st.session_state["highcharts_config"] = result["modifiedConfig"]
                    reply = f"{result['assistantMessage']} ({result['editMethod']}, {result['timing']}ms)"
                else:
                    error = edit_resp.json() if edit_resp.headers.get("content-type", "").startswith("application/json") else {}
                    reply = f"Sorry, I couldn't apply that change: {error.get('details') or error.get('error') or edit_resp.text}"
                st.session_state["chat_history"].append({"role": "assistant", "content": reply})
                st.rerun()
