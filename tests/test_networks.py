import numpy as np
import pytest

from parallel_rmad import NetworkParameters, SpecificId
from parallel_rmad.networks import FeedForwardNetwork, RecurrentNetwork


def _numeric_gradient(loss_fn, tensor, indices, eps=1e-6):
    grads = []
    for idx in indices:
        orig = tensor[idx]
        tensor[idx] = orig + eps
        plus = loss_fn()
        tensor[idx] = orig - eps
        minus = loss_fn()
        tensor[idx] = orig
        grads.append((plus - minus) / (2 * eps))
    return np.array(grads)


# --------------------------------------------------------------------------- #
# feed-forward
# --------------------------------------------------------------------------- #
@pytest.fixture
def ff_data():
    rng = np.random.default_rng(11)
    return rng.normal(size=(4, 3)), rng.normal(size=(4, 2))


def _ff(**kwargs):
    params = NetworkParameters(batch_size=4, **kwargs)
    return FeedForwardNetwork(3, 5, 2, num_layers=3, params=params, seed=0)


def test_feedforward_graph_layout():
    net = _ff()
    graph = net.graph
    assert len(graph) == 1 + 3 * 3 + 3
    assert graph.node("linear", None, 0).parameters[0] is graph.node("input")
    assert graph.node("linear", None, 2).parameters[0] is graph.node("activated", None, 1)
    assert graph.node("linear", None, 1).parameters[1] is net.hidden_layers[1].weight("W")
    assert graph.last_node.key == SpecificId("loss")


def test_feedforward_forward_matches_numpy(ff_data):
    x, y = ff_data
    net = _ff()
    loss = net.forward(x, y)

    h = x
    alpha = net.params.leaky_relu_alpha
    for layer in net.hidden_layers:
        z = h @ layer.weight("W") + layer.weight("B")
        h = np.where(z > 0, z, alpha * z)
    out = h @ net.output_layer.weight("WOut") + net.output_layer.weight("BOut")

    np.testing.assert_allclose(net.output, out)
    assert loss == pytest.approx(np.mean((out - y) ** 2))


def test_feedforward_gradients_match_finite_differences(ff_data):
    x, y = ff_data
    net = _ff()
    net.forward(x, y)
    net.backward()

    checks = [
        (net.hidden_layers[0], "W", [(0, 0), (2, 4), (1, 3)]),
        (net.hidden_layers[2], "B", [(0, 0), (0, 2)]),
        (net.output_layer, "WOut", [(0, 1), (4, 0)]),
        (net.output_layer, "BOut", [(0, 0), (0, 1)]),
    ]
    for layer, identifier, indices in checks:
        analytic = np.array([layer.gradient(identifier)[idx] for idx in indices])
        numeric = _numeric_gradient(lambda: net.forward(x, y), layer.weight(identifier), indices)
        np.testing.assert_allclose(analytic, numeric, rtol=1e-4, atol=1e-8)


def test_feedforward_parallel_and_sequential_backward_agree(ff_data):
    x, y = ff_data
    a, b = _ff(), _ff()
    a.forward(x, y)
    a.backward()
    b.forward(x, y)
    b.backward(run_sequentially=True)

    for la, lb in zip(a.model_layers, b.model_layers):
        for identifier in la.identifiers:
            np.testing.assert_allclose(la.gradient(identifier), lb.gradient(identifier), rtol=1e-12)


def test_feedforward_dependency_counts_equal_out_degree():
    net = _ff()
    counts = net.graph.count_dependencies(net.graph.last_node)
    for node in net.graph.nodes:
        assert counts[node.key] == node.out_degree


def test_feedforward_training_reduces_loss(ff_data):
    x, y = ff_data
    net = _ff(learning_rate=0.01)
    first = net.forward(x, y)
    for _ in range(150):
        net.train_step(x, y)
    assert net.forward(x, y) < first
    assert net.params.adam_iteration == 151


def test_feedforward_rejects_wrong_batch_shape():
    with pytest.raises(ValueError, match="shape"):
        _ff().forward(np.ones((2, 3)))


# --------------------------------------------------------------------------- #
# recurrent
# --------------------------------------------------------------------------- #
T, BATCH, N_IN, N_HIDDEN, N_OUT = 4, 2, 3, 5, 2


@pytest.fixture
def rnn_data():
    rng = np.random.default_rng(5)
    return rng.normal(size=(T, BATCH, N_IN)), rng.normal(size=(T, BATCH, N_OUT))


def _rnn():
    return RecurrentNetwork(N_IN, N_HIDDEN, N_OUT, T, params=NetworkParameters(batch_size=BATCH), seed=1)


def _rnn_reference(net, xs, ys):
    w = {name: net.layer.weight(name) for name in net.layer.identifiers}
    h = np.zeros((BATCH, N_HIDDEN))
    total = 0.0
    hs, outs = [], []
    for t in range(T):
        h = np.tanh(xs[t] @ w["Wx"] + h @ w["Wh"] + w["Bh"])
        out = h @ w["Wy"] + w["By"]
        total += np.mean((out - ys[t]) ** 2)
        hs.append(h)
        outs.append(out)
    return total, np.stack(hs), np.stack(outs)


def test_recurrent_forward_matches_numpy(rnn_data):
    xs, ys = rnn_data
    net = _rnn()
    loss = net.forward(xs, ys)

    expected_loss, hidden, outputs = _rnn_reference(net, xs, ys)
    assert loss == pytest.approx(expected_loss)
    np.testing.assert_allclose(net.hidden_states, hidden)
    np.testing.assert_allclose(net.outputs(), outputs)


def test_recurrent_steps_are_linked():
    net = _rnn()
    graph = net.graph
    assert len(graph) == T * 9
    assert graph.node("recurrent_projection", 0).parameters[0] is net.initial_hidden
    assert graph.node("recurrent_projection", 2).parameters[0] is graph.node("hidden", 1)
    assert graph.node("hidden", 1).out_degree == 2
    assert graph.node("hidden", T - 1).out_degree == 1
    assert graph.last_node.key == SpecificId("total_loss", T - 1)


def test_recurrent_gradients_accumulate_over_steps(rnn_data):
    xs, ys = rnn_data
    net = _rnn()
    net.forward(xs, ys)
    net.backward()

    for identifier, indices in [("Wh", [(0, 0), (3, 1), (4, 4)]), ("Wx", [(1, 2)]), ("Bh", [(0, 3)]), ("Wy", [(2, 1)])]:
        analytic = np.array([net.layer.gradient(identifier)[idx] for idx in indices])
        numeric = _numeric_gradient(lambda: net.forward(xs, ys), net.layer.weight(identifier), indices)
        np.testing.assert_allclose(analytic, numeric, rtol=1e-4, atol=1e-8)


def test_recurrent_parallel_and_sequential_backward_agree(rnn_data):
    xs, ys = rnn_data
    a, b = _rnn(), _rnn()
    a.forward(xs, ys)
    a.backward()
    b.forward(xs, ys)
    b.backward(run_sequentially=True)
    for identifier in a.layer.identifiers:
        np.testing.assert_allclose(a.layer.gradient(identifier), b.layer.gradient(identifier), rtol=1e-12)


def test_recurrent_train_step(rnn_data):
    xs, ys = rnn_data
    net = _rnn()
    before = net.layer.weight("Wh").copy()
    loss = net.train_step(xs, ys)
    assert np.isfinite(loss)
    assert not np.array_equal(before, net.layer.weight("Wh"))
