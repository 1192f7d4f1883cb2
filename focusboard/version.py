# focusboard/version.py

SERVICE_NAME = "focusboard-proxy"
SERVICE_VERSION = "0.3.0"


def service_label() -> str:
    """Used by /health, e.g. "focusboard-proxy:0.3.0"."""
    return f"{SERVICE_NAME}:{SERVICE_VERSION}"
