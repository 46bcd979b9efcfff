import numpy as np
import pytest

from parallel_rmad import NetworkParameters
from parallel_rmad.optim import (
    AdamOptimizer,
    GradientClearer,
    GradientClipper,
    ModelLayerBuilder,
    clip_gradients,
    initialize,
    update_weight_with_adam,
)


# --------------------------------------------------------------------------- #
# clipping
# --------------------------------------------------------------------------- #
def test_gradient_at_bound_is_unchanged():
    # constant tensor: std == 0, standardized values are 0 and the bound is 1
    g = np.full((2, 2), 1.0)
    clip_gradients(g, clip_value=4.0, minimum_value=1e-16)
    np.testing.assert_array_equal(g, np.full((2, 2), 1.0))


def test_gradient_equal_to_clip_value_is_unchanged():
    g = np.zeros((10, 10))
    g[3, 7] = 4.0
    z = (4.0 - g.mean()) / g.std()
    assert 1.0 + z >= 4.0

    clip_gradients(g, clip_value=4.0, minimum_value=1e-16)

    assert g[3, 7] == 4.0
    assert np.count_nonzero(g) == 1


def test_gradient_above_bound_is_clamped():
    g = np.full((2, 2), -3.0)
    clip_gradients(g, clip_value=4.0, minimum_value=1e-16)
    np.testing.assert_array_equal(g, np.full((2, 2), -1.0))


def test_outlier_is_clamped_to_dynamic_bound():
    g = np.array([[0.0, 0.0, 0.0, 10.0]])
    std = np.std(g)
    expected_bound = 1.0 + (10.0 - 2.5) / std

    clip_gradients(g, clip_value=4.0, minimum_value=1e-16)

    np.testing.assert_allclose(g, [[0.0, 0.0, 0.0, expected_bound]])


def test_clip_value_caps_the_bound():
    g = np.zeros(100)
    g[-1] = 100.0
    clip_gradients(g, clip_value=4.0, minimum_value=1e-16)
    assert g[-1] == pytest.approx(4.0)
    assert not g[:-1].any()


def test_tiny_gradients_are_floored_with_sign():
    g = np.array([1e-20, -1e-20, 0.5, -0.5, 0.0])
    clip_gradients(g, clip_value=4.0, minimum_value=1e-16)
    np.testing.assert_array_equal(g, [1e-16, -1e-16, 0.5, -0.5, 0.0])


def test_clip_is_in_place():
    g = np.full((3,), 9.0)
    assert clip_gradients(g, 4.0, 1e-16) is g


def test_gradient_clipper_over_layers():
    params = NetworkParameters(clip_value=4.0)
    layers = [ModelLayerBuilder(seed=i).add_group("W", (2, 2), "zeroes").build() for i in range(3)]
    for layer in layers:
        layer.gradient("W")[...] = 7.0

    GradientClipper(params).clip(layers)

    for layer in layers:
        np.testing.assert_array_equal(layer.gradient("W"), np.ones((2, 2)))


# --------------------------------------------------------------------------- #
# Adam
# --------------------------------------------------------------------------- #
def _adam_closed_form(w, g, m, v, t, beta1, beta2, eps, lr):
    m = beta1 * m + (1 - beta1) * g
    v = beta2 * v + (1 - beta2) * g * g
    m_hat = m / (1 - beta1 ** t)
    v_hat = v / (1 - beta2 ** t)
    return w - lr * m_hat / (np.sqrt(v_hat) + eps), m, v


def test_scalar_adam_matches_closed_form():
    w0, g, m0, v0, t = 0.5, 0.2, 0.1, 0.01, 3
    beta1, beta2, eps, lr = 0.9, 0.999, 1e-8, 0.01

    w = np.array([[w0]])
    m = np.array([[m0]])
    v = np.array([[v0]])
    update_weight_with_adam(w, m, v, np.array([[g]]), beta1, beta2, eps, lr, t)

    expected_w, expected_m, expected_v = _adam_closed_form(w0, g, m0, v0, t, beta1, beta2, eps, lr)
    assert w[0, 0] == pytest.approx(expected_w, rel=1e-12)
    assert m[0, 0] == pytest.approx(expected_m, rel=1e-12)
    assert v[0, 0] == pytest.approx(expected_v, rel=1e-12)


@pytest.mark.parametrize("shape", [(3,), (2, 3), (2, 3, 4), (2, 2, 3, 3)])
def test_adam_optimizer_handles_every_rank(shape):
    params = NetworkParameters(learning_rate=0.05, adam_iteration=2)
    layer = ModelLayerBuilder(seed=1).add_group("W", shape, "xavier").build()
    element = layer["W"]
    rng = np.random.default_rng(2)
    element.gradient[...] = rng.normal(size=shape)
    element.first_moment[...] = rng.normal(size=shape) * 0.1
    element.second_moment[...] = rng.random(size=shape) * 0.1

    expected_w, expected_m, expected_v = _adam_closed_form(
        element.weight.copy(), element.gradient.copy(), element.first_moment.copy(),
        element.second_moment.copy(), 2, params.adam_beta1, params.adam_beta2,
        params.adam_epsilon, params.learning_rate,
    )
    weight = element.weight

    AdamOptimizer(params).optimize([layer])

    assert element.weight is weight
    np.testing.assert_allclose(element.weight, expected_w, rtol=1e-12)
    np.testing.assert_allclose(element.first_moment, expected_m, rtol=1e-12)
    np.testing.assert_allclose(element.second_moment, expected_v, rtol=1e-12)


def test_adam_optimizer_parallel_matches_sequential():
    params = NetworkParameters()

    def make():
        layers = [ModelLayerBuilder(seed=i).add_group("W", (3, 3)).add_group("B", (1, 3), "zeroes").build()
                  for i in range(4)]
        for i, layer in enumerate(layers):
            layer.gradient("W")[...] = i + 1.0
            layer.gradient("B")[...] = -(i + 1.0)
        return layers

    a, b = make(), make()
    AdamOptimizer(params).optimize(a)
    AdamOptimizer(params).optimize(b, run_sequentially=True)
    for la, lb in zip(a, b):
        for identifier in la.identifiers:
            np.testing.assert_array_equal(la.weight(identifier), lb.weight(identifier))


# --------------------------------------------------------------------------- #
# model layers
# --------------------------------------------------------------------------- #
def test_model_layer_builder():
    layer = (ModelLayerBuilder(seed=0)
             .add_group("W", (4, 5), "xavier")
             .add_group("K", (2, 3, 3), "he")
             .add_group("B", (1, 5), "zeroes")
             .build())

    assert layer.identifiers == ["W", "K", "B"]
    assert layer.shape("K") == (2, 3, 3)
    limit = np.sqrt(6.0 / 9.0)
    assert np.all(np.abs(layer.weight("W")) <= limit)
    assert not layer.weight("B").any()
    for identifier in layer:
        element = layer[identifier]
        assert not element.gradient.any()
        assert not element.first_moment.any()
        assert not element.second_moment.any()


def test_model_layer_builder_validation():
    builder = ModelLayerBuilder(seed=0).add_group("W", (2, 2))
    with pytest.raises(ValueError, match="already exists"):
        builder.add_group("W", (2, 2))
    with pytest.raises(ValueError, match="Invalid dimensions"):
        builder.add_group("X", (1, 1, 1, 1, 1))
    with pytest.raises(ValueError, match="initialization"):
        initialize((2, 2), "orthogonal", np.random.default_rng(0))


def test_initialization_is_seeded():
    a = ModelLayerBuilder(seed=5).add_group("W", (3, 3), "he").build()
    b = ModelLayerBuilder(seed=5).add_group("W", (3, 3), "he").build()
    np.testing.assert_array_equal(a.weight("W"), b.weight("W"))


def test_gradient_clearer():
    layer = ModelLayerBuilder(seed=0).add_group("W", (2, 2)).build()
    gradient = layer.gradient("W")
    gradient[...] = 3.0
    loose = np.ones(4)

    clearer = GradientClearer()
    clearer.clear([layer])
    clearer.clear_tensors([loose, None])

    assert layer.gradient("W") is gradient
    assert not gradient.any()
    assert not loose.any()
