"""
Test configuration and fixtures for ShapeCanvas tests.
"""
import pytest
from fastapi.testclient import TestClient

from shapecanvas.main import app
from graph_builders import conv_pool_graph


@pytest.fixture
def client():
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def conv_graph():
    """Shape-clean conv/pool chain."""
    return conv_pool_graph()


@pytest.fixture
def conv_graph_json(conv_graph):
    """The conv/pool chain as a request body."""
    return conv_graph.model_dump(mode="json")
