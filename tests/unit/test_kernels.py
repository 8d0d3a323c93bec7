import pytest
import torch

from sfc.const import INDEX_DTYPE
from sfc.program import ComputeProgram
from tests.common import available_backends, chunk_tiles, cuda_available

BACKENDS = available_backends()


def kernels_for(backend):
    program = ComputeProgram()
    assert program.load_sparse_features_kernels(backend)
    return program


def naive_stimulus(samples, weights, hidden_to_visible, radius, ignore_middle):
    """Loop-by-loop receptive-field sum for small grids."""
    num_samples, visible_h, visible_w = samples.shape
    hidden_h, hidden_w, _ = weights.shape
    diam = 2 * radius + 1
    out = torch.zeros(hidden_h, hidden_w)
    for hy in range(hidden_h):
        for hx in range(hidden_w):
            cx = int((hx + 0.5) * hidden_to_visible[0])
            cy = int((hy + 0.5) * hidden_to_visible[1])
            total = 0.0
            for s in range(num_samples):
                for dy in range(-radius, radius + 1):
                    for dx in range(-radius, radius + 1):
                        if ignore_middle and dx == 0 and dy == 0:
                            continue
                        vx, vy = cx + dx, cy + dy
                        if not (0 <= vx < visible_w and 0 <= vy < visible_h):
                            continue
                        wi = s * diam * diam + (dy + radius) * diam + (dx + radius)
                        total += float(samples[s, vy, vx]) * float(weights[hy, hx, wi])
            out[hy, hx] = total
    return out


@pytest.mark.parametrize("device,backend", BACKENDS)
def test_derive_inputs_blends_previous_value(device, backend):
    program = kernels_for(backend)
    inputs = torch.tensor([[6.0, 2.0], [0.0, -4.0]], device=device)
    back = torch.zeros(2, 2, 2, device=device)
    back[..., 0] = torch.tensor([[2.0, 2.0], [1.0, 0.0]], device=device)
    front = torch.full_like(back, 99.0)

    program.load_kernel("sfc_derive_inputs")(inputs, back, front, 0.5)

    expected_rate = torch.tensor([[4.0, 0.0], [-1.0, -4.0]])
    expected_avg = torch.tensor([[4.0, 2.0], [0.5, -2.0]])
    assert torch.allclose(front[..., 1].cpu(), expected_rate)
    assert torch.allclose(front[..., 0].cpu(), expected_avg)


@pytest.mark.parametrize("device,backend", BACKENDS)
@pytest.mark.parametrize("lambda_", [0.0, 1.0])
def test_derive_inputs_blend_endpoints(device, backend, lambda_):
    program = kernels_for(backend)
    inputs = torch.tensor([[3.0, -1.0]], device=device)
    back = torch.zeros(1, 2, 2, device=device)
    back[..., 0] = torch.tensor([[1.0, 2.0]], device=device)
    front = torch.zeros_like(back)

    program.load_kernel("sfc_derive_inputs")(inputs, back, front, lambda_)

    if lambda_ == 0.0:
        # average never moves, a zero average passes the input through
        assert torch.equal(front[..., 0], back[..., 0])
    else:
        assert torch.equal(front[..., 0], inputs)
    assert torch.equal(front[..., 1], inputs - back[..., 0])


@pytest.mark.parametrize("device,backend", BACKENDS)
def test_add_sample_shifts_fifo(device, backend):
    program = kernels_for(backend)
    num_samples = 3
    derived = torch.zeros(2, 3, 2, device=device)
    derived[..., 1] = 7.0
    back = torch.stack(
        [torch.full((2, 3), float(v), device=device) for v in (1.0, 2.0, 3.0)]
    )
    front = torch.zeros_like(back)

    program.load_kernel("sfc_add_sample")(derived, back, front)

    assert front.shape == (num_samples, 2, 3)
    assert torch.all(front[0] == 7.0)
    assert torch.all(front[1] == 1.0)
    assert torch.all(front[2] == 2.0)


@pytest.mark.parametrize("device,backend", BACKENDS)
@pytest.mark.parametrize("ignore_middle", [False, True])
@pytest.mark.parametrize(
    "visible_hw,hidden_hw,radius,num_samples",
    [((4, 4), (4, 4), 1, 1), ((6, 5), (3, 4), 2, 2), ((3, 7), (5, 2), 1, 3)],
)
def test_stimulus_matches_naive_sum(
    device, backend, ignore_middle, visible_hw, hidden_hw, radius, num_samples
):
    program = kernels_for(backend)
    torch.manual_seed(0)
    visible_h, visible_w = visible_hw
    hidden_h, hidden_w = hidden_hw
    diam = 2 * radius + 1
    samples = torch.randn(num_samples, visible_h, visible_w)
    weights = torch.randn(hidden_h, hidden_w, num_samples * diam * diam)
    running = torch.randn(hidden_h, hidden_w)
    hidden_to_visible = (visible_w / hidden_w, visible_h / hidden_h)

    front = torch.zeros(hidden_h, hidden_w, device=device)
    program.load_kernel("sfc_stimulus")(
        samples.to(device),
        running.to(device),
        front,
        weights.to(device),
        hidden_to_visible,
        radius,
        ignore_middle,
    )

    expected = running + naive_stimulus(
        samples, weights, hidden_to_visible, radius, ignore_middle
    )
    assert torch.allclose(front.cpu(), expected, atol=1e-5)


@pytest.mark.parametrize("device,backend", BACKENDS)
def test_stimulus_border_counts(device, backend):
    program = kernels_for(backend)
    samples = torch.ones(1, 4, 4, device=device)
    weights = torch.ones(4, 4, 9, device=device)
    zero = torch.zeros(4, 4, device=device)
    with_centre = torch.zeros(4, 4, device=device)
    without_centre = torch.zeros(4, 4, device=device)

    stimulus = program.load_kernel("sfc_stimulus")
    stimulus(samples, zero, with_centre, weights, (1.0, 1.0), 1, False)
    stimulus(samples, zero, without_centre, weights, (1.0, 1.0), 1, True)

    assert with_centre[0, 0] == 4.0
    assert with_centre[0, 1] == 6.0
    assert with_centre[1, 1] == 9.0
    assert torch.equal(without_centre, with_centre - 1.0)


@pytest.mark.parametrize("device,backend", BACKENDS)
def test_activate_adds_state_trace(device, backend):
    program = kernels_for(backend)
    stimulus = torch.tensor([[0.5, -1.0], [2.0, 0.0]], device=device)
    states = torch.tensor([[1.0, 0.0], [0.0, 1.0]], device=device)
    out = torch.zeros_like(stimulus)

    program.load_kernel("sfc_activate")(stimulus, states, out, 0.25)

    assert torch.allclose(out.cpu(), torch.tensor([[0.75, -1.0], [2.0, 0.25]]))


@pytest.mark.parametrize("device,backend", BACKENDS)
@pytest.mark.parametrize(
    "hidden_hw,chunk_size", [((4, 4), (2, 2)), ((5, 7), (3, 2)), ((6, 6), (6, 1))]
)
def test_inhibit_one_winner_per_chunk(device, backend, hidden_hw, chunk_size):
    program = kernels_for(backend)
    torch.manual_seed(1)
    activations = torch.randn(*hidden_hw, device=device)
    chunks_x = -(-hidden_hw[1] // chunk_size[0])
    chunks_y = -(-hidden_hw[0] // chunk_size[1])
    states = torch.full(hidden_hw, 5.0, device=device)
    winners = torch.full((chunks_y, chunks_x, 2), -1, dtype=INDEX_DTYPE, device=device)

    program.load_kernel("sfc_inhibit")(activations, states, winners, chunk_size)

    assert set(states.unique().tolist()) <= {0.0, 1.0}
    acts = dict(chunk_tiles(activations.cpu(), chunk_size))
    for (cx, cy), tile in chunk_tiles(states.cpu(), chunk_size):
        assert tile.sum() == 1.0
        dy, dx = (tile == 1.0).nonzero()[0].tolist()
        assert acts[(cx, cy)][dy, dx] == acts[(cx, cy)].max()
        assert winners[cy, cx].tolist() == [dx, dy]


@pytest.mark.parametrize("device,backend", BACKENDS)
def test_inhibit_ties_resolve_to_first_in_row_major_order(device, backend):
    program = kernels_for(backend)
    activations = torch.zeros(4, 4, device=device)
    # chunk (1, 0): equal maxima at offsets (1, 0) and (0, 1); (1, 0) comes first
    activations[0, 3] = 2.0
    activations[1, 2] = 2.0
    states = torch.zeros(4, 4, device=device)
    winners = torch.zeros(2, 2, 2, dtype=INDEX_DTYPE, device=device)

    program.load_kernel("sfc_inhibit")(activations, states, winners, (2, 2))

    assert winners[0, 1].tolist() == [1, 0]
    assert states[0, 3] == 1.0 and states[1, 2] == 0.0
    # all-equal chunks pick their origin
    assert winners[1, 0].tolist() == [0, 0]
    assert states[2, 0] == 1.0


@pytest.mark.parametrize("device,backend", BACKENDS)
def test_inhibit_other_writes_states_only(device, backend):
    program = kernels_for(backend)
    activations = torch.arange(16, dtype=torch.float32, device=device).view(4, 4)
    states = torch.zeros(4, 4, device=device)

    program.load_kernel("sfc_inhibit_other")(activations, states, (2, 2))

    expected = torch.zeros(4, 4)
    expected[1, 1] = expected[1, 3] = expected[3, 1] = expected[3, 3] = 1.0
    assert torch.equal(states.cpu(), expected)


@pytest.mark.parametrize("device,backend", BACKENDS)
def test_learn_weights_gated_on_winners(device, backend):
    program = kernels_for(backend)
    torch.manual_seed(2)
    alpha = 0.5
    samples = torch.arange(16, dtype=torch.float32).view(1, 4, 4)
    weights = torch.randn(4, 4, 9)
    winners = torch.zeros(2, 2, 2, dtype=INDEX_DTYPE)
    winners_prev = torch.zeros(2, 2, 2, dtype=INDEX_DTYPE)
    winners[0, 0] = torch.tensor([1, 1])

    front = torch.full((4, 4, 9), 99.0, device=device)
    program.load_kernel("sfc_learn_weights")(
        winners.to(device),
        winners_prev.to(device),
        samples.to(device),
        weights.to(device),
        front,
        (1.0, 1.0),
        (2, 2),
        1,
        alpha,
    )
    front = front.cpu()

    # new winner at (1, 1): every window cell in bounds
    patch = samples[0, 0:3, 0:3].reshape(9)
    assert torch.allclose(front[1, 1], weights[1, 1] + alpha * (patch - weights[1, 1]))

    # displaced previous winner at (0, 0) decays where its window is in bounds
    in_bounds = torch.zeros(3, 3, dtype=torch.bool)
    in_bounds[1:, 1:] = True
    in_bounds = in_bounds.reshape(9)
    assert torch.allclose(front[0, 0][in_bounds], weights[0, 0][in_bounds] * 0.5)
    assert torch.equal(front[0, 0][~in_bounds], weights[0, 0][~in_bounds])

    # losers that were not winning copy through unchanged
    assert torch.equal(front[0, 1], weights[0, 1])
    assert torch.equal(front[3, 3], weights[3, 3])

    # repeat winner at chunk (1, 0) origin keeps learning
    assert not torch.allclose(front[0, 2], weights[0, 2])


@pytest.mark.skipif(not cuda_available, reason="CUDA required for Triton kernels")
def test_triton_learn_matches_torch_reference():
    triton_program = kernels_for("triton")
    torch_program = kernels_for("torch")
    torch.manual_seed(3)
    hidden_h, hidden_w, radius, num_samples = 7, 9, 2, 2
    diam = 2 * radius + 1
    samples = torch.randn(num_samples, 6, 11, device="cuda")
    weights = torch.randn(hidden_h, hidden_w, num_samples * diam * diam, device="cuda")
    winners = torch.randint(0, 3, (3, 3, 2), dtype=INDEX_DTYPE, device="cuda")
    winners_prev = torch.randint(0, 3, (3, 3, 2), dtype=INDEX_DTYPE, device="cuda")
    ratio = (11 / hidden_w, 6 / hidden_h)

    out_triton = torch.empty_like(weights)
    out_torch = torch.empty_like(weights)
    args = (winners, winners_prev, samples, weights)
    triton_program.load_kernel("sfc_learn_weights")(
        *args, out_triton, ratio, (3, 3), radius, 0.05
    )
    torch_program.load_kernel("sfc_learn_weights")(
        *args, out_torch, ratio, (3, 3), radius, 0.05
    )

    assert torch.allclose(out_triton, out_torch, atol=1e-6)
