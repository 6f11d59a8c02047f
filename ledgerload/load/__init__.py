"""
Load test orchestration package.

The entrypoint remains `main.py` at the repo root. Funding, output preparation,
dispatch and the orchestrator that sequences them live under `ledgerload/load/`.
"""
