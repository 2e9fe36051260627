from importlib.metadata import version

try:
    __version__ = version("codeqa")
except Exception:
    __version__ = "unknown"
