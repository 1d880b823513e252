import base64
import os

import requests
import streamlit as st

API_BASE = os.getenv("PDF_IMAGE_API_BASE", os.getenv("API_BASE", "http://localhost:9501")).rstrip("/")
REQUEST_TIMEOUT = float(os.getenv("PDF_IMAGE_UI_TIMEOUT", "300"))


def _reset_state():
    for key in ["result", "error"]:
        if key in st.session_state:
            del st.session_state[key]
    # Bump the uploader key to clear any previously uploaded file widget state
    if "upload_key" in st.session_state:
        st.session_state["upload_key"] += 1
    else:
        st.session_state["upload_key"] = 1


def _error_text(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return f"{resp.status_code} {resp.text}"
    if isinstance(data, dict) and "error" in data:
        return f"{resp.status_code} {data['error']}"
    return f"{resp.status_code} {resp.text}"


def _handle_response(resp: requests.Response) -> tuple[dict[str, object] | None, str | None]:
    if resp.status_code != 200:
        return None, f"Conversion failed: {_error_text(resp)}"
    return resp.json(), None


def _convert_upload(name: str, data: bytes, output: str) -> tuple[dict[str, object] | None, str | None]:
    try:
        files = {"pdf_file": (name, data, "application/pdf")}
        resp = requests.post(f"{API_BASE}/convert", files=files, data={"output": output}, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        return None, f"Failed to connect to API: {e}"
    return _handle_response(resp)


def _convert_url(url: str, output: str) -> tuple[dict[str, object] | None, str | None]:
    try:
        resp = requests.post(
            f"{API_BASE}/fetch-and-convert",
            json={"url": url, "output": output},
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException as e:
        return None, f"Failed to connect to API: {e}"
    return _handle_response(resp)


def _image_sources(payload: dict[str, object]) -> list[str | bytes]:
    """Download URLs as-is; inline base64 pages decoded to PNG bytes."""
    images = [str(i) for i in payload.get("images", [])]  # type: ignore[union-attr]
    if payload.get("output_type") == "base64":
        return [base64.b64decode(i) for i in images]
    return list(images)


def main() -> None:
    st.set_page_config(page_title="PDF to Image", page_icon="🖼️", layout="centered")
    st.title("🖼️ PDF to Image")
    st.caption(f"API base: {API_BASE}")

    if st.button("Restart", type="secondary"):
        _reset_state()
        st.rerun()

    if "upload_key" not in st.session_state:
        st.session_state["upload_key"] = 0
    output = st.radio("Output", ["blob", "base64"], horizontal=True, help="blob: download links, base64: inline images")
    source_tab, url_tab = st.tabs(["Upload", "From URL"])

    with source_tab:
        uploaded = st.file_uploader("Upload a PDF", type=["pdf"], key=f"uploader-{st.session_state['upload_key']}")
        if uploaded and st.button("Convert", type="primary", key="convert-upload"):
            with st.spinner("Uploading and converting..."):
                result, error = _convert_upload(uploaded.name, uploaded.getvalue(), output)
            st.session_state["result"], st.session_state["error"] = result, error

    with url_tab:
        url = st.text_input("PDF URL", placeholder="https://example.com/document.pdf")
        if url and st.button("Fetch and convert", type="primary", key="convert-url"):
            with st.spinner("Fetching and converting..."):
                result, error = _convert_url(url, output)
            st.session_state["result"], st.session_state["error"] = result, error

    if result := st.session_state.get("result"):
        st.success(f"Converted {result.get('pages', 0)} page(s)")
        for i, src in enumerate(_image_sources(result)):
            st.image(src, caption=f"Page {i + 1}")
            if isinstance(src, bytes):
                st.download_button(f"Download page {i + 1}", data=src, file_name=f"page-{i}.png", mime="image/png")

    if err := st.session_state.get("error"):
        st.error(err)


if __name__ == "__main__":
    main()
