# === NAVMAP v1 ===
# {
#   "module": "BuildCache.CachePull.__main__",
#   "purpose": "Entry point for CLI invocation via python -m.",
#   "sections": []
# }
# === /NAVMAP ===

"""Entry point for CLI invocation via python -m."""

from BuildCache.CachePull.cli import app

if __name__ == "__main__":
    app()
