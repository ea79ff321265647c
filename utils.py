# utils.py
import os, re


def clamp(v, lo, hi): return max(lo, min(hi, v))


def env_or_secret(name: str, default=None):
    """Priority: Streamlit secrets (if available) > env var > default."""
    # Import streamlit lazily so modules stay importable outside a Streamlit run
    try:
        import streamlit as st
        val = st.secrets.get(name, "")
        if val:
            return str(val).strip()
    except Exception:
        pass
    val = os.environ.get(name, "")
    return val.strip() if val else default


def safe_name(name: str) -> str:
    base_name = os.path.basename(name or "upload")
    return re.sub(r"[^A-Za-z0-9._-]+", "_", base_name)
