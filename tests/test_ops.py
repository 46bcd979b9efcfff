import numpy as np
import pytest

from parallel_rmad import NetworkParameters, UnknownOperationError
from parallel_rmad.rmad.ops import create_operation, register_operation, registered_operations, Operation
from parallel_rmad.rmad.ops.base import get_operation_type, unbroadcast

BUILTINS = [
    "MatrixMultiply", "MatrixAdd", "MatrixAddBroadcasting", "MatrixSubtract",
    "HadamardProduct", "ScalarMultiply", "MatrixTranspose", "Copy",
    "LeakyReLU", "Sigmoid", "Tanh", "Softmax", "MeanSquaredErrorLoss",
]


def _numeric_grads(name, inputs, weights, eps=1e-6):
    """d/d(inputs) of sum(forward(*inputs) * weights) by central differences."""
    params = NetworkParameters()
    grads = []
    for i, x in enumerate(inputs):
        g = np.zeros_like(x)
        for idx in np.ndindex(x.shape):
            orig = x[idx]
            x[idx] = orig + eps
            plus = np.sum(create_operation(name, params).forward(*inputs) * weights)
            x[idx] = orig - eps
            minus = np.sum(create_operation(name, params).forward(*inputs) * weights)
            x[idx] = orig
            g[idx] = (plus - minus) / (2 * eps)
        grads.append(g)
    return grads


@pytest.mark.parametrize("name, shapes", [
    ("MatrixMultiply", [(2, 3), (3, 4)]),
    ("MatrixAdd", [(2, 3), (2, 3)]),
    ("MatrixAddBroadcasting", [(4, 3), (1, 3)]),
    ("MatrixSubtract", [(2, 2), (2, 2)]),
    ("HadamardProduct", [(3, 2), (3, 2)]),
    ("MatrixTranspose", [(2, 5)]),
    ("Copy", [(3, 3)]),
    ("LeakyReLU", [(3, 4)]),
    ("Sigmoid", [(2, 3)]),
    ("Tanh", [(2, 3)]),
    ("Softmax", [(2, 4)]),
])
def test_backward_matches_finite_differences(name, shapes):
    rng = np.random.default_rng(0)
    inputs = [rng.normal(size=s) for s in shapes]
    op = create_operation(name, NetworkParameters())
    out = op.forward(*[x.copy() for x in inputs])
    weights = rng.normal(size=out.shape)

    analytic = op.backward(weights)
    numeric = _numeric_grads(name, inputs, weights)

    assert len(analytic) == len(inputs)
    for a, n in zip(analytic, numeric):
        np.testing.assert_allclose(a, n, rtol=1e-5, atol=1e-7)


def test_scalar_multiply_gives_no_scalar_gradient():
    op = create_operation("ScalarMultiply", NetworkParameters())
    np.testing.assert_allclose(op.forward(np.ones((2, 2)), 3.0), np.full((2, 2), 3.0))
    dx, ds = op.backward(np.ones((2, 2)))
    np.testing.assert_allclose(dx, np.full((2, 2), 3.0))
    assert ds is None


def test_mean_squared_error_loss():
    op = create_operation("MeanSquaredErrorLoss", NetworkParameters())
    prediction = np.array([[1.0, 2.0], [3.0, 4.0]])
    target = np.array([[1.0, 0.0], [3.0, 2.0]])

    loss = op.forward(prediction, target)
    dp, dt = op.backward(np.ones((1, 1)))

    np.testing.assert_allclose(loss, [[2.0]])
    np.testing.assert_allclose(dp, 2.0 * (prediction - target) / 4.0)
    assert dt is None

    with pytest.raises(ValueError):
        op.forward(prediction, target[:1])


def test_leaky_relu_uses_configured_alpha():
    op = create_operation("LeakyReLU", NetworkParameters(leaky_relu_alpha=0.2))
    np.testing.assert_allclose(op.forward(np.array([[-1.0, 2.0]])), [[-0.2, 2.0]])
    np.testing.assert_allclose(op.backward(np.ones((1, 2)))[0], [[0.2, 1.0]])


def test_matrix_add_rejects_mismatched_shapes():
    with pytest.raises(ValueError):
        create_operation("MatrixAdd", NetworkParameters()).forward(np.ones((2, 2)), np.ones((1, 2)))


def test_registry_contents():
    names = registered_operations()
    for name in BUILTINS:
        assert name in names
        assert get_operation_type(name).type_name == name


def test_unknown_type_raises():
    with pytest.raises(UnknownOperationError, match="Nope"):
        get_operation_type("Nope")


def test_conflicting_registration_raises():
    with pytest.raises(ValueError, match="already registered"):
        @register_operation("Copy")
        class AnotherCopy(Operation):
            pass


def test_unbroadcast():
    grad = np.ones((4, 3))
    np.testing.assert_allclose(unbroadcast(grad, (1, 3)), np.full((1, 3), 4.0))
    np.testing.assert_allclose(unbroadcast(grad, (3,)), np.full(3, 4.0))
    assert unbroadcast(grad, (4, 3)) is grad
