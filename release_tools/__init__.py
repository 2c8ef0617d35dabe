"""
Script: release_tools package
What: Holds Python release helpers that replaced the older staging and release shell scripts.
Doing: Groups CLI entrypoints and shared utility code in one importable package.
Why: Keeps release logic readable and testable instead of spreading it across many shell files.
Goal: Provide one maintainable home for artifact publishing, validation and chart versioning.
"""
