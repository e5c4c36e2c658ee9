"""
Package marker for scripts to allow running as a module:

    python3 -m scripts.run_scenarios

This avoids import issues for 'pyramet'.
"""
