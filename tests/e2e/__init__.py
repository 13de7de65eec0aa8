"""End-to-end tests for complete training pipelines.

These tests verify that the full training workflow doesn't catastrophically break.
They are slower (30s-2min each) and test the complete pipeline.

Marked with @pytest.mark.slow and @pytest.mark.e2e for selective execution.
"""
