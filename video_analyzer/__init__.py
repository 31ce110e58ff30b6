"""Video Analyzer - analysis run orchestration and multi-engine scoring.

This package drives the analysis side of the video dashboard:
- Analysis runs (snapshot, remote execution, polling, rerun confirmation)
- Scoring engines (independent remote scorers per video)
- Quantum score (composite of all completed engine scores)
"""

__version__ = "0.1.0"
