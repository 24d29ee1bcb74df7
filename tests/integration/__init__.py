"""
layered-sandbox: integration test package

File: tests/integration/__init__.py

Purpose
- Package marker for tests that launch the CLI in a child interpreter.
"""
