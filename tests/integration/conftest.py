"""Workflow test conftest.

Multi-step deletion flows run against FakeDeletionStore and a fake session
factory, with every gateway mocked. Tests here are auto-marked ``workflow``.
"""

import pytest


@pytest.fixture(autouse=True)
def _mark_workflow(request):
    """Auto-mark all tests in this directory as workflow."""
    request.node.add_marker(pytest.mark.workflow)
