import base64
import io
import os
import time

import requests
import streamlit as st

API_BASE = os.getenv("DOC_VIEWER_API_BASE", os.getenv("API_BASE", "http://localhost:8080")).rstrip("/")
MAX_UPLOAD_MB = float(os.getenv("MAX_UPLOAD_MB", "10"))


def _reset_state():
    for key in ["document", "preview", "file_preview", "error", "page_text"]:
        if key in st.session_state:
            del st.session_state[key]
    # Bump the uploader key to clear any previously uploaded file widget state
    st.session_state["upload_key"] = st.session_state.get("upload_key", 0) + 1


def _error_text(resp: requests.Response) -> str:
    try:
        detail = resp.json().get("detail")
    except ValueError:
        return f"{resp.status_code} {resp.text}"
    if isinstance(detail, dict):
        return str(detail.get("message") or detail)
    return str(detail)


def _upload(uploaded_file: io.BytesIO) -> dict[str, object] | None:
    try:
        files = {"file": (uploaded_file.name, uploaded_file.getvalue(), uploaded_file.type or "application/octet-stream")}
        resp = requests.post(f"{API_BASE}/files", files=files, timeout=60)
    except requests.RequestException as e:
        st.session_state["error"] = f"Failed to connect to API: {e}"
        return None
    if resp.status_code != 201:
        st.session_state["error"] = _error_text(resp)
        return None
    return resp.json()


def _call(method: str, path: str, **kwargs) -> dict[str, object] | None:
    try:
        resp = requests.request(method, f"{API_BASE}{path}", timeout=60, **kwargs)
    except requests.RequestException as e:
        st.session_state["error"] = f"Request failed: {e}"
        return None
    if resp.status_code != 200:
        st.session_state["error"] = _error_text(resp)
        return None
    return resp.json()


def _open_preview(document: dict[str, object]) -> None:
    st.session_state["document"] = document
    st.session_state.pop("page_text", None)
    snap = _call("POST", "/preview", json={"url": document["url"], "name": document["name"]})
    if snap is not None:
        # block until the engine settles so the first render shows the outcome
        snap = _call("GET", "/preview", params={"wait": "true"}) or snap
        st.session_state["preview"] = snap


def _refresh(snap: dict[str, object] | None) -> None:
    if snap is not None:
        st.session_state["preview"] = snap
        st.session_state.pop("page_text", None)


def _render_viewer(snap: dict[str, object]) -> None:
    doc = snap.get("document") or {}
    actions = set(snap.get("actions") or [])
    st.subheader("Document Viewer")
    st.caption(str(doc.get("name", "")))

    cols = st.columns(3)
    if "download" in actions:
        link = _call("GET", "/preview/download")
        if link:
            cols[0].link_button("Download", str(link["url"]))
    if "open_externally" in actions:
        ext = _call("GET", "/preview/external")
        if ext:
            cols[1].link_button("View Online", str(ext["url"]))
    if cols[2].button("Close"):
        _call("DELETE", "/preview")
        _reset_state()
        st.rerun()

    phase = snap.get("phase")
    if snap.get("unsupported"):
        st.warning("This file type cannot be previewed. Please download the file to view it.")
        return
    if phase == "loading":
        with st.spinner("Loading document..."):
            time.sleep(1.0)
        _refresh(_call("GET", "/preview", params={"wait": "true"}))
        st.rerun()
    if phase == "error":
        err = snap.get("error") or {}
        st.error(str(err.get("message", "Failed to load document")))
        if snap.get("format") == "convertible_document":
            st.caption(
                "The document cannot be displayed in the viewer. You can download it to view "
                "with Microsoft Word or another compatible application."
            )
        if "retry" in actions and st.button("Retry"):
            _call("POST", "/preview/retry")
            _refresh(_call("GET", "/preview", params={"wait": "true"}))
            st.rerun()
        return

    fmt = snap.get("format")
    if fmt == "paged_document":
        if "page_text" not in st.session_state:
            page = _call("GET", "/preview/page")
            st.session_state["page_text"] = (page or {}).get("text") or ""
        st.text(st.session_state["page_text"])
        total = snap.get("total_pages") or 0
        if total and total > 1:
            prev_col, info_col, next_col = st.columns([1, 2, 1])
            if prev_col.button("Previous", disabled="previous_page" not in actions):
                _refresh(_call("POST", "/preview/previous"))
                st.rerun()
            info_col.write(f"Page {snap.get('current_page')} of {total}")
            if next_col.button("Next", disabled="next_page" not in actions):
                _refresh(_call("POST", "/preview/next"))
                st.rerun()
    elif fmt == "convertible_document":
        st.html(str(snap.get("converted_markup") or ""))
    elif fmt == "image":
        url = str(doc.get("url", ""))
        try:
            resp = requests.get(url, timeout=60)
            ok = resp.status_code == 200
        except requests.RequestException:
            ok = False
        _call("POST", "/preview/image", json={"generation": snap.get("generation"), "ok": ok})
        if ok:
            st.image(resp.content)
        else:
            _refresh(_call("GET", "/preview"))
            st.rerun()


def main() -> None:
    st.set_page_config(page_title="Document Viewer", page_icon="📄", layout="centered")
    st.title("📄 Document Viewer")
    st.caption(f"API base: {API_BASE}")

    if st.button("Restart", type="secondary"):
        _reset_state()
        st.rerun()

    if "upload_key" not in st.session_state:
        st.session_state["upload_key"] = 0
    uploaded = st.file_uploader(
        f"Drag & drop your file here (JPG, PNG, GIF, PDF, DOC, DOCX, max {MAX_UPLOAD_MB:g}MB)",
        type=["jpg", "jpeg", "png", "gif", "pdf", "doc", "docx"],  # type: ignore[arg-type]
        key=f"uploader-{st.session_state['upload_key']}",
    )

    if uploaded and "document" not in st.session_state and st.button("Upload and preview", type="primary"):
        st.session_state.pop("error", None)
        with st.spinner("Uploading..."):
            stored = _upload(uploaded)
        if stored:
            st.session_state["file_preview"] = stored.get("preview")
            st.toast("File stored", icon="✅")
            _open_preview(stored)

    if thumb := st.session_state.get("file_preview"):
        # data URL from the intake gate
        st.image(base64.b64decode(str(thumb).split(",", 1)[1]), width=128)

    if snap := st.session_state.get("preview"):
        _render_viewer(snap)

    if err := st.session_state.get("error"):
        st.error(err)


if __name__ == "__main__":
    main()
