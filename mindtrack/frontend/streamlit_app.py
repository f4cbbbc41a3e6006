from datetime import date

import altair as alt
import pandas as pd
import requests
import streamlit as st

st.set_page_config(page_title="MindTrack", layout="centered")

API_BASE = st.text_input("API base URL", value="http://127.0.0.1:8000")

PHQ9_ITEMS = [
    "Little interest or pleasure in doing things",
    "Feeling down, depressed, or hopeless",
    "Trouble falling or staying asleep, or sleeping too much",
    "Feeling tired or having little energy",
    "Poor appetite or overeating",
    "Feeling bad about yourself, or that you are a failure",
    "Trouble concentrating on things",
    "Moving or speaking slowly, or being fidgety or restless",
    "Thoughts that you would be better off dead, or of hurting yourself",
]
PHQ9_OPTIONS = {
    "Not at all": 0,
    "Several days": 1,
    "More than half the days": 2,
    "Nearly every day": 3,
}
MOOD_FACTORS = [
    "work", "family", "friends", "exercise", "sleep", "weather",
    "health", "finances", "stress", "leisure", "social", "diet",
]
SEVERITY_COLORS = {
    "minimal": "#10b981",
    "mild": "#fbbf24",
    "moderate": "#f97316",
    "severe": "#ef4444",
}

if "token" not in st.session_state:
    st.session_state.token = None
if "dev_mode" not in st.session_state:
    st.session_state.dev_mode = False


def api_headers() -> dict:
    if st.session_state.token:
        return {"Authorization": f"Bearer {st.session_state.token}"}
    return {}


def api_url(path: str) -> str:
    return f"{API_BASE}{path}"


def safe_json(resp: requests.Response):
    content_type = resp.headers.get("content-type", "")
    if "application/json" not in content_type:
        return None
    try:
        return resp.json()
    except ValueError:
        return None


def show_response_error(resp: requests.Response, path: str, fallback_message: str) -> None:
    url = api_url(path)
    payload = safe_json(resp)
    if payload and isinstance(payload, dict):
        detail = payload.get("detail", fallback_message)
        field_errors = payload.get("errors") or []
        st.error(f"{fallback_message} ({resp.status_code}) | {url} | {detail}")
        for item in field_errors[1:]:
            st.caption(f"{item.get('field')}: {item.get('message')}")
        return
    text = (resp.text or "").strip()
    snippet = text[:500] if text else "No response body."
    st.error(f"{fallback_message} ({resp.status_code}) | {url} | {snippet}")


def api_call(method: str, path: str, **kwargs):
    try:
        return requests.request(method, api_url(path), headers=api_headers(), timeout=10, **kwargs)
    except requests.RequestException as exc:
        st.error(f"Request failed: {exc}")
        return None


st.title("MindTrack")
st.caption("Not a diagnosis. If you feel unsafe contact local emergency services.")

account_tab, mood_tab, assessment_tab, history_tab = st.tabs(
    ["Account", "Mood", "PHQ-9", "History"]
)

health_resp = api_call("GET", "/health")
if health_resp is None:
    st.error("Backend check failed. Start backend with: uvicorn mindtrack.backend.app.main:app --reload --port 8000")
elif health_resp.ok:
    payload = safe_json(health_resp) or {}
    st.session_state.dev_mode = bool(payload.get("dev_mode"))
else:
    show_response_error(health_resp, "/health", "Backend unhealthy.")

with account_tab:
    st.subheader("Sign up")
    with st.form("register_form"):
        reg_name = st.text_input("Name", key="reg_name")
        reg_email = st.text_input("Email", key="reg_email")
        reg_password = st.text_input("Password", type="password", key="reg_password")
        if st.form_submit_button("Create account"):
            if not reg_email or not reg_password:
                st.warning("Enter an email and password.")
            else:
                resp = api_call(
                    "POST",
                    "/auth/register",
                    json={"email": reg_email, "password": reg_password, "name": reg_name or None},
                )
                if resp is not None and resp.ok:
                    st.session_state.token = (safe_json(resp) or {}).get("access_token")
                    st.success("Account created. You are signed in.")
                elif resp is not None:
                    show_response_error(resp, "/auth/register", "Registration failed.")

    st.subheader("Login")
    with st.form("login_form"):
        login_email = st.text_input("Email", key="login_email")
        login_password = st.text_input("Password", type="password", key="login_password")
        if st.form_submit_button("Sign in"):
            resp = api_call(
                "POST",
                "/auth/login",
                data={"username": login_email, "password": login_password},
            )
            if resp is not None and resp.ok:
                st.session_state.token = (safe_json(resp) or {}).get("access_token")
                st.success("Signed in.")
            elif resp is not None:
                show_response_error(resp, "/auth/login", "Login failed.")

    if st.session_state.token:
        st.subheader("Profile")
        with st.form("profile_form"):
            new_name = st.text_input("Display name", max_chars=100)
            if st.form_submit_button("Update name"):
                resp = api_call("PATCH", "/user/profile", json={"name": new_name})
                if resp is not None and resp.ok:
                    st.success("Profile updated.")
                elif resp is not None:
                    show_response_error(resp, "/user/profile", "Unable to update profile.")

        with st.expander("Delete account"):
            st.caption("Removes your account with all mood entries and assessments.")
            confirm_password = st.text_input("Password", type="password", key="delete_password")
            if st.button("Delete my account"):
                resp = api_call("DELETE", "/user/account", json={"password": confirm_password})
                if resp is not None and resp.ok:
                    st.session_state.token = None
                    st.success("Account deleted.")
                elif resp is not None:
                    show_response_error(resp, "/user/account", "Unable to delete account.")

with mood_tab:
    if not st.session_state.token:
        st.warning("Sign in on the Account tab to continue.")
    else:
        st.subheader("Log today's mood")
        with st.form("mood_form"):
            entry_date = date.today()
            if st.session_state.dev_mode:
                entry_date = st.date_input("Entry date", value=date.today())
            mood = st.slider("Mood", 1, 10, 5)
            energy = st.slider("Energy", 1, 10, 5)
            anxiety = st.slider("Anxiety", 1, 10, 5)
            sleep = st.slider("Sleep quality", 1, 10, 5)
            factors = st.multiselect("What affected you today?", MOOD_FACTORS)
            notes = st.text_area("Notes", max_chars=1000)
            if st.form_submit_button("Save mood entry"):
                resp = api_call("POST", "/moods", json={
                    "entry_date": entry_date.isoformat(),
                    "mood": mood,
                    "energy": energy,
                    "anxiety": anxiety,
                    "sleep": sleep,
                    "factors": factors,
                    "notes": notes,
                })
                if resp is not None and resp.ok:
                    entry = (safe_json(resp) or {}).get("mood_entry", {})
                    st.success(f"Saved. Wellness score: {entry.get('wellness_score')}")
                elif resp is not None:
                    show_response_error(resp, "/moods", "Unable to save mood entry.")

        stats_resp = api_call("GET", "/moods/stats/summary")
        if stats_resp is not None and stats_resp.ok:
            stats = (safe_json(stats_resp) or {}).get("stats", {})
            if stats.get("total_entries"):
                cols = st.columns(4)
                cols[0].metric("Avg mood", stats.get("avg_mood"))
                cols[1].metric("Avg energy", stats.get("avg_energy"))
                cols[2].metric("Avg anxiety", stats.get("avg_anxiety"))
                cols[3].metric("Avg sleep", stats.get("avg_sleep"))

        trends_resp = api_call("GET", "/dashboard/trends/mood", params={"days": 30})
        if trends_resp is not None and trends_resp.ok:
            trends = (safe_json(trends_resp) or {}).get("trends", [])
            if trends:
                trend_df = pd.DataFrame(trends)
                trend_df["date"] = pd.to_datetime(trend_df["date"])
                trend_df = trend_df.melt(
                    id_vars=["date"],
                    value_vars=["mood", "energy", "anxiety", "sleep"],
                    var_name="metric",
                    value_name="value",
                )
                st.altair_chart(
                    alt.Chart(trend_df).mark_line(point=True).encode(
                        x=alt.X("date:T", title="Date"),
                        y=alt.Y("value:Q", title="Daily average", scale=alt.Scale(domain=[1, 10])),
                        color=alt.Color("metric:N"),
                    ),
                    use_container_width=True,
                )
        elif trends_resp is not None:
            show_response_error(trends_resp, "/dashboard/trends/mood", "Unable to load mood trends.")

with assessment_tab:
    if not st.session_state.token:
        st.warning("Sign in on the Account tab to continue.")
    else:
        st.subheader("PHQ-9")
        st.caption("Over the last 2 weeks, how often have you been bothered by the following?")
        with st.form("phq9_form"):
            answers = {}
            for index, item in enumerate(PHQ9_ITEMS):
                choice = st.radio(item, list(PHQ9_OPTIONS.keys()), key=f"phq9_{index}", horizontal=True)
                answers[str(index)] = PHQ9_OPTIONS[choice]
            notes = st.text_area("Notes", max_chars=1000, key="phq9_notes")
            if st.form_submit_button("Submit assessment"):
                total = sum(answers.values())
                resp = api_call("POST", "/assessments", json={
                    "type": "PHQ-9",
                    "score": total,
                    "max_score": len(PHQ9_ITEMS) * 3,
                    "responses": answers,
                    "notes": notes,
                })
                if resp is not None and resp.ok:
                    assessment = (safe_json(resp) or {}).get("assessment", {})
                    prediction = assessment.get("prediction") or {}
                    st.success(
                        f"Score {assessment.get('score')}/{assessment.get('max_score')} | "
                        f"{assessment.get('severity_description')}"
                    )
                    if prediction:
                        st.caption(f"Rule band: {prediction.get('status')} ({prediction.get('confidence')})")
                    for line in assessment.get("recommendations", []):
                        st.write(f"- {line}")
                elif resp is not None:
                    show_response_error(resp, "/assessments", "Unable to save assessment.")

with history_tab:
    if not st.session_state.token:
        st.warning("Sign in on the Account tab to continue.")
    else:
        st.subheader("Assessment history")
        history_resp = api_call("GET", "/assessments", params={"limit": 100})
        if history_resp is not None and history_resp.ok:
            assessments = (safe_json(history_resp) or {}).get("assessments", [])
            if not assessments:
                st.info("Complete an assessment to see your history.")
            else:
                history_df = pd.DataFrame(assessments)
                history_df["date"] = pd.to_datetime(history_df["date"])
                chart = alt.Chart(history_df).mark_line(point=True).encode(
                    x=alt.X("date:T", title="Date"),
                    y=alt.Y("percentage_score:Q", title="Score (%)", scale=alt.Scale(domain=[0, 100])),
                    color=alt.Color("type:N"),
                    tooltip=["date:T", "type:N", "score:Q", "severity:N"],
                )
                st.altair_chart(chart, use_container_width=True)
                st.dataframe(history_df[["date", "type", "score", "max_score", "severity"]])
                for item in assessments[:10]:
                    color = SEVERITY_COLORS.get(item["severity"], "#9ca3af")
                    with st.expander(f"{item['date'][:10]} | {item['type']} | {item['severity']}"):
                        st.markdown(
                            f"<span style='color:{color}'>{item['severity_description']}</span>",
                            unsafe_allow_html=True,
                        )
                        if item.get("notes"):
                            st.write(item["notes"])
                        if st.button("Delete", key=f"delete_{item['id']}"):
                            resp = api_call("DELETE", f"/assessments/{item['id']}")
                            if resp is not None and resp.ok:
                                st.success("Deleted.")
                            elif resp is not None:
                                show_response_error(resp, f"/assessments/{item['id']}", "Unable to delete.")
        elif history_resp is not None:
            show_response_error(history_resp, "/assessments", "Unable to load assessments.")

        stats_resp = api_call("GET", "/assessments/prediction/stats")
        if stats_resp is not None and stats_resp.ok:
            model_stats = (safe_json(stats_resp) or {}).get("model_stats", {})
            st.caption(
                f"Severity rules v{model_stats.get('model_version')} | "
                f"{model_stats.get('total_training_samples')} logged samples"
            )

st.caption("Not a diagnosis. If you feel unsafe contact local emergency services.")
