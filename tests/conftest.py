import numpy as np
import pytest

from parallel_rmad import ComputationGraph, NetworkParameters

DIAMOND = {
    "timeSteps": [
        {
            "startOperations": [
                {"id": "A", "type": "Copy", "inputs": ["Input"], "gradientResultTo": ["DInput"]},
                {"id": "B", "type": "ScalarMultiply", "inputs": ["A", "Two"]},
                {"id": "C", "type": "ScalarMultiply", "inputs": ["A", "Three"]},
                {"id": "D", "type": "MatrixAdd", "inputs": ["B", "C"]},
            ]
        }
    ]
}


def build_diamond(x, params=None):
    """A -> B, A -> C, B -> D, C -> D with D = 2A + 3A."""
    grad = np.zeros_like(x)
    graph = (ComputationGraph(params)
             .add_intermediate("Input", lambda t, l: x)
             .add_gradient("DInput", lambda t, l: grad)
             .add_scalar("Two", lambda t, l: 2.0)
             .add_scalar("Three", lambda t, l: 3.0)
             .construct(DIAMOND))
    return graph, grad


@pytest.fixture
def params():
    return NetworkParameters()


@pytest.fixture
def diamond():
    x = np.arange(6, dtype=np.float64).reshape(2, 3)
    graph, grad = build_diamond(x)
    return graph, x, grad


@pytest.fixture
def make_diamond():
    return build_diamond
